"""Batch partitioning and dispatch pacing for classifier calls.

Public helpers used by the orchestrator:

- ``partition``: split unseen messages into fixed-size, 1-numbered batches.
- ``dispatch_delay``: the pause inserted before a batch is dispatched,
  ``min(base + index * step, cap)``.
- ``BatchScheduler``: async iterator that hands out batches one at a time and
  sleeps between consecutive dispatches.

Batches are processed strictly one after another. The external classifier
throttles aggressively, so the pause between dispatches is part of its rate
contract and must not be parallelized away.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import TypeAlias

from .logging_setup import get_logger
from .models import RawMessage

Sleep: TypeAlias = Callable[[float], Awaitable[None]]

_logger = get_logger("sms_ledger.batching")


@dataclass(frozen=True, slots=True)
class Batch:
    """A bounded group of unseen messages sent together to the classifier."""

    number: int  # 1-based, increasing in dispatch order
    total: int
    messages: tuple[RawMessage, ...]

    def __len__(self) -> int:
        return len(self.messages)


def total_batches_for(total: int, *, batch_size: int) -> int:
    return math.ceil(total / max(1, batch_size))


def partition(messages: Sequence[RawMessage], batch_size: int) -> list[Batch]:
    """Return ``ceil(n / batch_size)`` batches preserving message order.

    Ranges are half-open ``[base, end)``; the last batch holds the remainder.
    """

    if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size <= 0:
        raise ValueError("batch_size must be a positive integer")

    n_total = len(messages)
    batches_total = total_batches_for(n_total, batch_size=batch_size)
    out: list[Batch] = []
    for k in range(batches_total):
        base = k * batch_size
        end = min(base + batch_size, n_total)
        out.append(Batch(number=k + 1, total=batches_total, messages=tuple(messages[base:end])))
    return out


def dispatch_delay(index: int, *, base: float, step: float, cap: float) -> float:
    """Pause before dispatching the batch at 0-based ``index``; grows with ``index`` up to ``cap``."""

    return max(0.0, min(base + index * step, cap))


class BatchScheduler:
    """Hand out batches sequentially, sleeping between consecutive dispatches.

    The first batch goes out immediately. The consumer must finish with a
    batch before asking for the next one, which is what keeps dispatch
    strictly sequential.
    """

    def __init__(
        self,
        *,
        base: float,
        step: float,
        cap: float,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._base = base
        self._step = step
        self._cap = cap
        self._sleep = sleep

    def delay_for(self, index: int) -> float:
        return dispatch_delay(index, base=self._base, step=self._step, cap=self._cap)

    async def run(self, batches: Iterable[Batch]) -> AsyncIterator[Batch]:
        for index, batch in enumerate(batches):
            if index > 0:
                delay = self.delay_for(index)
                _logger.debug(
                    "batching:pause before_batch=%d delay_sec=%.2f", batch.number, delay
                )
                if delay > 0:
                    await self._sleep(delay)
            yield batch


__all__ = ["Batch", "BatchScheduler", "dispatch_delay", "partition", "total_batches_for"]
