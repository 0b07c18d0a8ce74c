from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from sms_ledger.aggregate import summarize, transaction_stats, transaction_windows, window_starts
from sms_ledger.models import Category, TransactionRecord, TransactionType

_NOW = datetime(2024, 6, 20, 15, 30, tzinfo=UTC)


def _rec(
    fp: str,
    when: datetime,
    *,
    type: TransactionType = TransactionType.DEBIT,
    amount: str = "10",
    category: Category = Category.BANK,
) -> TransactionRecord:
    return TransactionRecord(
        category=category,
        type=type,
        amount=Decimal(amount),
        description=fp,
        original_message=f"body {fp}",
        confidence=0.9,
        date=when,
        fingerprint=fp,
        batch_number=1,
        raw_sender="VM-HDFCBK",
    )


def test_summarize_today_credit_and_debit():
    ledger = (
        _rec("c", _NOW - timedelta(hours=1), type=TransactionType.CREDIT, amount="100"),
        _rec("d", _NOW - timedelta(hours=2), type=TransactionType.DEBIT, amount="40"),
    )
    s = summarize(ledger, window_starts(_NOW)["today"], top_n=5)
    assert s.total_count == 2
    assert s.total_credit == Decimal("100")
    assert s.total_debit == Decimal("40")
    assert s.net == Decimal("60")
    assert [r.fingerprint for r in s.top] == ["c", "d"]


def test_summarize_filters_and_limits_top():
    ledger = tuple(_rec(f"r{i}", _NOW - timedelta(days=i)) for i in range(6))
    s = summarize(ledger, _NOW - timedelta(days=3, hours=1), top_n=2)
    assert s.total_count == 4
    assert [r.fingerprint for r in s.transactions] == ["r0", "r1", "r2", "r3"]
    assert [r.fingerprint for r in s.top] == ["r0", "r1"]


def test_summarize_empty_ledger():
    s = summarize((), _NOW, top_n=5)
    assert (s.total_count, s.total_credit, s.total_debit, s.net) == (0, 0, 0, 0)
    assert s.top == () and s.transactions == ()


def test_summarize_requires_aware_since():
    with pytest.raises(ValueError):
        summarize((), datetime(2024, 1, 1), top_n=1)


def test_window_starts():
    starts = window_starts(_NOW)
    assert starts["today"] == datetime(2024, 6, 20, tzinfo=UTC)
    assert starts["week"] == datetime(2024, 6, 13, tzinfo=UTC)
    assert starts["month"] == datetime(2024, 6, 1, tzinfo=UTC)
    assert starts["quarter"] == datetime(2024, 4, 21, tzinfo=UTC)


def test_window_starts_follow_the_clock_timezone():
    ist = timezone(timedelta(hours=5, minutes=30))
    now = datetime(2024, 6, 20, 1, 0, tzinfo=ist)
    assert window_starts(now)["today"] == datetime(2024, 6, 20, tzinfo=ist)


def test_transaction_windows_top_sizes_and_ordering():
    # Unordered input; windows sort by date descending.
    ledger = [_rec(f"r{i}", _NOW - timedelta(hours=i)) for i in range(10)]
    ledger.append(_rec("old", _NOW - timedelta(days=45)))
    ledger.reverse()

    windows = transaction_windows(ledger, now=_NOW)

    assert windows.today.total_count == 10
    assert len(windows.today.top) == 5
    assert windows.today.top[0].fingerprint == "r0"
    assert len(windows.month.top) == 4
    assert windows.week.total_count == 10
    assert windows.quarter.total_count == 11
    assert windows.month.total_count == 10


def test_transaction_stats_per_category():
    ledger = (
        _rec("a", _NOW, amount="10"),
        _rec("b", _NOW, amount="5", type=TransactionType.CREDIT),
        _rec("c", _NOW, amount="7", category=Category.UPI),
    )
    stats = transaction_stats(ledger)
    assert (stats.bank.total, stats.bank.debits, stats.bank.credits) == (2, 1, 1)
    assert stats.bank.total_debit_amount == Decimal("10")
    assert stats.bank.total_credit_amount == Decimal("5")
    assert (stats.upi.total, stats.upi.debits) == (1, 1)
    assert stats.upi.total_debit_amount == Decimal("7")
