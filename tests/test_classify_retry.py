from __future__ import annotations

import asyncio
import json

import pytest

from sms_ledger.batching import Batch
from sms_ledger.classify import ClassificationClient, RetryPolicy
from sms_ledger.errors import (
    BatchFailure,
    HttpStatusError,
    MalformedResponse,
    NetworkError,
    RateLimited,
    SafetyRejected,
)
from sms_ledger.models import RawMessage
from sms_ledger.transports import FINISH_MAX_TOKENS

from tests.helpers.classifier_stub import (
    ScriptedTransport,
    candidate,
    extract_messages_from_prompt,
    reply,
)

_BODY = "Rs.499.00 debited from A/c XX1234 to VPA netflix@hdfcbank UPI Ref 123456789012"
_GOOD = [candidate(_BODY, idx=0, category="UPI", amount="499")]


def _batch() -> Batch:
    msg = RawMessage(sender="VM-HDFCBK", timestamp_ms=1718000000000, body=_BODY)
    return Batch(number=2, total=3, messages=(msg,))


def _run(script, policy: RetryPolicy | None = None):
    slept: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        slept.append(seconds)

    transport = ScriptedTransport(script)
    client = ClassificationClient(
        transport,
        policy=policy or RetryPolicy(rate_limit_cooldown_sec=10.0, network_backoff_sec=(2.0, 4.0)),
        sleep=fake_sleep,
    )
    try:
        result = asyncio.run(client.classify(_batch()))
    except BatchFailure as e:
        return e, transport, slept
    return result, transport, slept


def test_prompt_embeds_batch_messages_with_idx():
    result, transport, _ = _run([reply(_GOOD)])
    assert result == _GOOD
    [prompt] = transport.prompts
    messages = extract_messages_from_prompt(prompt)
    assert messages == [
        {"idx": 0, "sender": "VM-HDFCBK", "date": "2024-06-10T06:13:20+00:00", "body": _BODY}
    ]
    assert list(messages[0]) == ["idx", "sender", "date", "body"]


def test_rate_limit_waits_cooldown_then_succeeds():
    result, transport, slept = _run([RateLimited("429"), reply(_GOOD)])
    assert result == _GOOD
    assert transport.calls == 2
    assert slept == [10.0]


def test_rate_limit_exhausts_max_retries():
    err, transport, slept = _run([RateLimited("429")] * 3)
    assert isinstance(err, BatchFailure)
    assert err.batch_number == 2
    assert transport.calls == 3  # first attempt + max_retries
    assert slept == [10.0, 10.0]
    assert isinstance(err.__cause__, RateLimited)


def test_network_errors_use_backoff_table():
    result, transport, slept = _run([NetworkError("reset"), NetworkError("timeout"), reply(_GOOD)])
    assert result == _GOOD
    assert slept == [2.0, 4.0]


def test_empty_payload_is_retryable():
    result, transport, slept = _run([MalformedResponse("no candidates"), reply(_GOOD)])
    assert result == _GOOD
    assert transport.calls == 2
    assert slept == [2.0]


def test_non_429_status_is_fatal_without_retry():
    err, transport, slept = _run([HttpStatusError(500, "boom"), reply(_GOOD)])
    assert isinstance(err, BatchFailure)
    assert "HTTP 500" in err.reason
    assert transport.calls == 1
    assert slept == []


def test_safety_returns_empty_without_retry():
    result, transport, _ = _run([SafetyRejected("blocked"), reply(_GOOD)])
    assert result == []
    assert transport.calls == 1


def test_max_tokens_reply_is_repaired_before_retrying():
    full = json.dumps(_GOOD + [candidate("second message body", idx=1)])
    truncated = full[: full.index("second") + 3]
    result, transport, _ = _run([reply(truncated, FINISH_MAX_TOKENS)])
    assert result == _GOOD
    assert transport.calls == 1


def test_unrepairable_reply_retries_once_then_succeeds():
    result, transport, slept = _run([reply("I could not find any JSON", FINISH_MAX_TOKENS), reply(_GOOD)])
    assert result == _GOOD
    assert transport.calls == 2
    assert slept == []


def test_unparseable_twice_fails_the_batch():
    err, transport, _ = _run([reply("nope"), reply("still nope"), reply(_GOOD)])
    assert isinstance(err, BatchFailure)
    assert transport.calls == 2


def test_empty_array_is_a_valid_answer():
    result, transport, _ = _run([reply([])])
    assert result == []
    assert transport.calls == 1


@pytest.mark.parametrize(
    ("retry_no", "expected"),
    [(1, 2.0), (2, 4.0), (3, 4.0)],
)
def test_backoff_table_reuses_last_entry(retry_no, expected):
    assert RetryPolicy(network_backoff_sec=(2.0, 4.0)).backoff_for(retry_no) == expected
