"""Read-side rollups over the ledger: time windows and per-category stats.

Nothing here mutates its input. Callers pass a ledger snapshot (an immutable
tuple), so these functions are safe to call while a sync run is in flight.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from decimal import Decimal

from .models import (
    Category,
    CategoryStats,
    TransactionRecord,
    TransactionStats,
    TransactionType,
    TransactionWindows,
    WindowSummary,
)

# Top-N per window: today, week, month, quarter.
WINDOW_TOP_N: dict[str, int] = {"today": 5, "week": 5, "month": 4, "quarter": 5}

_ZERO = Decimal("0")


def summarize(ledger: Sequence[TransactionRecord], since: datetime, top_n: int) -> WindowSummary:
    """Roll up the records dated on or after ``since``.

    ``ledger`` is expected in date-descending order, so ``top`` is the
    ``top_n`` most recent records of the window.
    """

    if since.tzinfo is None:
        raise ValueError("since must be timezone-aware")
    in_window = tuple(r for r in ledger if r.date >= since)
    credit = sum((r.amount for r in in_window if r.type is TransactionType.CREDIT), _ZERO)
    debit = sum((r.amount for r in in_window if r.type is TransactionType.DEBIT), _ZERO)
    return WindowSummary(
        total_count=len(in_window),
        total_credit=credit,
        total_debit=debit,
        net=credit - debit,
        transactions=in_window,
        top=in_window[: max(0, top_n)],
    )


def _start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def window_starts(now: datetime) -> dict[str, datetime]:
    """Window lower bounds relative to ``now`` (in ``now``'s timezone).

    - today: midnight today
    - week: midnight seven days ago
    - month: midnight on the first of the current month
    - quarter: midnight sixty days ago
    """

    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return {
        "today": _start_of_day(now),
        "week": _start_of_day(now - timedelta(days=7)),
        "month": _start_of_day(now).replace(day=1),
        "quarter": _start_of_day(now - timedelta(days=60)),
    }


def transaction_windows(
    ledger: Sequence[TransactionRecord], now: datetime | None = None
) -> TransactionWindows:
    now = now or datetime.now().astimezone()
    ordered = sorted(ledger, key=lambda r: r.date, reverse=True)
    starts = window_starts(now)
    return TransactionWindows(
        **{name: summarize(ordered, starts[name], WINDOW_TOP_N[name]) for name in starts}
    )


def _category_stats(records: Iterable[TransactionRecord]) -> CategoryStats:
    total = debits = credits = 0
    debit_amount = credit_amount = _ZERO
    for r in records:
        total += 1
        if r.type is TransactionType.DEBIT:
            debits += 1
            debit_amount += r.amount
        else:
            credits += 1
            credit_amount += r.amount
    return CategoryStats(
        total=total,
        debits=debits,
        credits=credits,
        total_debit_amount=debit_amount,
        total_credit_amount=credit_amount,
    )


def transaction_stats(ledger: Sequence[TransactionRecord]) -> TransactionStats:
    return TransactionStats(
        bank=_category_stats(r for r in ledger if r.category is Category.BANK),
        upi=_category_stats(r for r in ledger if r.category is Category.UPI),
    )


__all__ = [
    "WINDOW_TOP_N",
    "summarize",
    "transaction_stats",
    "transaction_windows",
    "window_starts",
]
