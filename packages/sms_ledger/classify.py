"""Classification client: one batch in, loosely-typed candidates out.

The client renders the batch prompt, calls the configured transport, and runs
the response through :mod:`sms_ledger.repair`. All retrying happens in one
explicit bounded loop (:meth:`ClassificationClient.classify`):

- ``RateLimited``: sleep the fixed cool-down, retry up to ``max_retries``.
- ``NetworkError`` and empty payloads (``MalformedResponse``): sleep the next
  entry of the backoff table, retry up to ``max_retries``. Both share the
  same budget as rate limiting.
- ``HttpStatusError``: fatal for the batch.
- ``SafetyRejected``: the batch yields no candidates; no retry.
- Text that does not parse, including a ``MAX_TOKENS`` reply that repair
  could not recover: retry ``malformed_retries`` times.

Exhausted or fatal attempts raise :class:`BatchFailure`; the orchestrator
counts it and moves on to the next batch.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from . import prompting, repair
from .batching import Batch, Sleep
from .config import PipelineSettings
from .errors import (
    BatchFailure,
    HttpStatusError,
    MalformedResponse,
    NetworkError,
    RateLimited,
    SafetyRejected,
)
from .logging_setup import get_logger
from .transports import FINISH_MAX_TOKENS, ClassifierTransport

_logger = get_logger("sms_ledger.classify")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 2
    rate_limit_cooldown_sec: float = 10.0
    network_backoff_sec: tuple[float, ...] = (2.0, 4.0)
    malformed_retries: int = 1

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            rate_limit_cooldown_sec=settings.rate_limit_cooldown_sec,
            network_backoff_sec=settings.network_backoff_sec,
            malformed_retries=settings.malformed_retries,
        )

    def backoff_for(self, retry_no: int) -> float:
        """Delay before the ``retry_no``-th (1-based) retry after a network failure."""

        table = self.network_backoff_sec
        return table[min(retry_no, len(table)) - 1]


class ClassificationClient:
    def __init__(
        self,
        transport: ClassifierTransport,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def classify(self, batch: Batch) -> list[dict[str, Any]]:
        """Return the candidate objects the classifier produced for ``batch``.

        Raises :class:`BatchFailure` when the batch cannot be classified.
        """

        policy = self._policy
        prompt = prompting.build_prompt(batch.messages)
        retries = 0
        parse_retries = 0

        _logger.info(
            "classify:batch_llm batch=%d/%d num_messages=%d", batch.number, batch.total, len(batch)
        )
        while True:
            t0 = time.perf_counter()
            try:
                reply = await self._transport.generate(prompt)
            except SafetyRejected as e:
                _logger.warning("classify:safety_rejected batch=%d detail=%s", batch.number, e)
                return []
            except HttpStatusError as e:
                _logger.error(
                    "classify:batch_failed_terminal batch=%d status=%d error=%s",
                    batch.number,
                    e.status_code,
                    e.__class__.__name__,
                )
                raise BatchFailure(batch.number, str(e)) from e
            except (RateLimited, NetworkError, MalformedResponse) as e:
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if retries >= policy.max_retries:
                    _logger.error(
                        "classify:batch_failed_terminal batch=%d retries=%d latency_ms=%.2f error=%s",
                        batch.number,
                        retries,
                        dt_ms,
                        e.__class__.__name__,
                    )
                    raise BatchFailure(
                        batch.number, f"{e.__class__.__name__} after {retries} retries: {e}"
                    ) from e
                retries += 1
                if isinstance(e, RateLimited):
                    delay = policy.rate_limit_cooldown_sec
                else:
                    delay = policy.backoff_for(retries)
                _logger.warning(
                    "classify:batch_retry batch=%d attempt=%d latency_ms=%.2f error=%s delay_sec=%.2f",
                    batch.number,
                    retries,
                    dt_ms,
                    e.__class__.__name__,
                    delay,
                )
                await self._sleep(delay)
                continue

            truncated = reply.finish_reason == FINISH_MAX_TOKENS
            candidates = repair.repair_and_parse(reply.text, truncated=truncated)
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if candidates is not None:
                _logger.info(
                    "classify:batch_done batch=%d candidates=%d finish=%s latency_ms=%.2f",
                    batch.number,
                    len(candidates),
                    reply.finish_reason,
                    dt_ms,
                )
                return candidates

            if parse_retries >= policy.malformed_retries:
                _logger.error(
                    "classify:batch_failed_terminal batch=%d finish=%s error=unparseable",
                    batch.number,
                    reply.finish_reason,
                )
                raise BatchFailure(batch.number, "classifier response is not valid JSON")
            parse_retries += 1
            _logger.warning(
                "classify:batch_retry batch=%d parse_attempt=%d finish=%s error=unparseable",
                batch.number,
                parse_retries,
                reply.finish_reason,
            )


__all__ = ["ClassificationClient", "RetryPolicy"]
