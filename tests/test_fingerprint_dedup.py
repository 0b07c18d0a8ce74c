from __future__ import annotations

from pathlib import Path

from sms_ledger.models import RawMessage
from sms_ledger.persistence import DEDUP_KEY, compute_fingerprint

from tests.helpers.db import make_stores, read_raw

_BODY = "Rs.1250.00 debited from A/c XX1234 on 12-Jun to VPA swiggy@icici UPI Ref 416512345678"


def _msg(ts: int = 1718000000000, body: str = _BODY, sender: str = "VM-HDFCBK") -> RawMessage:
    return RawMessage(sender=sender, timestamp_ms=ts, body=body)


def test_fingerprint_is_deterministic_hex_sha256():
    a = compute_fingerprint(_msg())
    b = compute_fingerprint(_msg())
    assert a == b
    assert len(a) == 64 and all(c in "0123456789abcdef" for c in a)


def test_fingerprint_changes_with_sender_timestamp_and_prefix():
    base = compute_fingerprint(_msg())
    assert compute_fingerprint(_msg(sender="AD-SBIINB")) != base
    assert compute_fingerprint(_msg(ts=1718000000001)) != base
    assert compute_fingerprint(_msg(body="X" + _BODY)) != base


def test_fingerprint_ignores_body_after_prefix():
    # Accepted approximation: only the first 50 characters of the body count.
    assert compute_fingerprint(_msg(body=_BODY[:50] + " tail A")) == compute_fingerprint(
        _msg(body=_BODY[:50] + " tail B")
    )
    assert compute_fingerprint(_msg(body=_BODY), prefix_chars=200) != compute_fingerprint(
        _msg(body=_BODY[:60]), prefix_chars=200
    )


def test_filter_unseen_then_commit_is_idempotent(tmp_path: Path):
    url, _store, dedup = make_stores(tmp_path / "dedup.db")
    messages = [_msg(ts=1718000000000 + i, body=f"{_BODY} #{i}") for i in range(4)]

    unseen = dedup.filter_unseen(messages)
    assert unseen == messages

    added = dedup.commit(dedup.fingerprint(m) for m in unseen[:2])
    assert added == 2
    assert dedup.filter_unseen(messages) == messages[2:]

    # Committing again adds nothing; filtering twice equals filtering once.
    assert dedup.commit(dedup.fingerprint(m) for m in unseen[:2]) == 0
    once = dedup.filter_unseen(messages)
    assert dedup.filter_unseen(once) == once
    assert len(read_raw(url, DEDUP_KEY)) == 2


def test_filter_unseen_collapses_repeats_within_input(tmp_path: Path):
    _url, _store, dedup = make_stores(tmp_path / "dedup.db")
    m = _msg()
    assert dedup.filter_unseen([m, m, _msg(ts=1)]) == [m, _msg(ts=1)]


def test_dedup_clear_forgets_everything(tmp_path: Path):
    _url, _store, dedup = make_stores(tmp_path / "dedup.db")
    dedup.commit([dedup.fingerprint(_msg())])
    assert dedup.seen()
    dedup.clear()
    assert dedup.seen() == frozenset()
    assert dedup.filter_unseen([_msg()]) == [_msg()]
