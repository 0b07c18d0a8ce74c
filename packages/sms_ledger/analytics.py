"""Whole-ledger analytics: totals, monthly and daily trends, breakdowns.

``bank_analytics`` computes everything in a single pass over the ledger and
returns plain frozen dataclasses that the CLI renders as tables.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .models import TransactionRecord, TransactionType

MONTHS_SHOWN = 6
DAYS_SHOWN = 7
TOP_DESCRIPTIONS = 5
RECENT_SHOWN = 8

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class PeriodTotals:
    period: str  # "YYYY-MM" for months, "YYYY-MM-DD" for days
    credit: Decimal
    debit: Decimal
    count: int

    @property
    def net(self) -> Decimal:
        return self.credit - self.debit


@dataclass(frozen=True, slots=True)
class CategoryShare:
    category: str
    credit: Decimal
    debit: Decimal
    count: int
    percentage: Decimal  # share of credit + debit volume, one decimal place


@dataclass(frozen=True, slots=True)
class DescriptionCount:
    description: str
    count: int
    total: Decimal


@dataclass(frozen=True, slots=True)
class BankAnalytics:
    transaction_count: int
    credit_count: int
    debit_count: int
    total_credit: Decimal
    total_debit: Decimal
    net_balance: Decimal
    average_credit: Decimal
    average_debit: Decimal
    monthly: tuple[PeriodTotals, ...]
    weekly_trend: tuple[PeriodTotals, ...]
    category_breakdown: tuple[CategoryShare, ...]
    top_descriptions: tuple[DescriptionCount, ...]
    recent: tuple[TransactionRecord, ...]
    confidence_score: float


def _average(total: Decimal, count: int) -> Decimal:
    if count == 0:
        return _ZERO
    return (total / count).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class _Bucket:
    __slots__ = ("credit", "debit", "count")

    def __init__(self) -> None:
        self.credit = _ZERO
        self.debit = _ZERO
        self.count = 0

    def add(self, record: TransactionRecord) -> None:
        if record.type is TransactionType.CREDIT:
            self.credit += record.amount
        else:
            self.debit += record.amount
        self.count += 1


def _periods(buckets: dict[str, _Bucket], keep: int) -> tuple[PeriodTotals, ...]:
    keys = sorted(buckets)[-keep:]
    return tuple(
        PeriodTotals(period=k, credit=buckets[k].credit, debit=buckets[k].debit, count=buckets[k].count)
        for k in keys
    )


def bank_analytics(ledger: Sequence[TransactionRecord]) -> BankAnalytics:
    """Summarize the whole ledger.

    Monthly and daily buckets use each record's own (UTC) date; only periods
    with at least one transaction appear. ``top_descriptions`` ranks by
    transaction count, ties broken by first appearance in date-descending order.
    """

    ordered = sorted(ledger, key=lambda r: r.date, reverse=True)
    monthly: dict[str, _Bucket] = defaultdict(_Bucket)
    daily: dict[str, _Bucket] = defaultdict(_Bucket)
    categories: dict[str, _Bucket] = defaultdict(_Bucket)
    descriptions: Counter[str] = Counter()
    description_totals: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    overall = _Bucket()
    credit_count = 0
    confidence_sum = 0.0

    for r in ordered:
        overall.add(r)
        if r.type is TransactionType.CREDIT:
            credit_count += 1
        monthly[r.date.strftime("%Y-%m")].add(r)
        daily[r.date.strftime("%Y-%m-%d")].add(r)
        categories[str(r.category)].add(r)
        if r.description:
            descriptions[r.description] += 1
            description_totals[r.description] += r.amount
        confidence_sum += r.confidence

    debit_count = overall.count - credit_count
    volume = overall.credit + overall.debit
    breakdown = tuple(
        CategoryShare(
            category=name,
            credit=b.credit,
            debit=b.debit,
            count=b.count,
            percentage=(
                ((b.credit + b.debit) / volume * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
                if volume
                else _ZERO
            ),
        )
        for name, b in sorted(categories.items(), key=lambda kv: kv[1].credit + kv[1].debit, reverse=True)
    )

    return BankAnalytics(
        transaction_count=overall.count,
        credit_count=credit_count,
        debit_count=debit_count,
        total_credit=overall.credit,
        total_debit=overall.debit,
        net_balance=overall.credit - overall.debit,
        average_credit=_average(overall.credit, credit_count),
        average_debit=_average(overall.debit, debit_count),
        monthly=_periods(monthly, MONTHS_SHOWN),
        weekly_trend=_periods(daily, DAYS_SHOWN),
        category_breakdown=breakdown,
        top_descriptions=tuple(
            DescriptionCount(description=d, count=n, total=description_totals[d])
            for d, n in descriptions.most_common(TOP_DESCRIPTIONS)
        ),
        recent=tuple(ordered[:RECENT_SHOWN]),
        confidence_score=(confidence_sum / overall.count) if overall.count else 0.0,
    )


__all__ = [
    "BankAnalytics",
    "CategoryShare",
    "DescriptionCount",
    "PeriodTotals",
    "bank_analytics",
]
