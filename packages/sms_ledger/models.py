"""Data models and type aliases for ``sms_ledger``.

Raw messages are plain frozen dataclasses: they are produced fresh by a
message source on every sync and never persisted. Transaction records are
pydantic models because they round-trip through the JSON key/value store and
must be validated on the way back in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import NamedTuple, TypeAlias

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Closed classification set
# ---------------------------------------------------------------------------


class Category(StrEnum):
    BANK = "BANK"
    UPI = "UPI"


class TransactionType(StrEnum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawMessage:
    """A single SMS as read from the device inbox or an export file."""

    sender: str
    timestamp_ms: int
    body: str


Fingerprint: TypeAlias = str
"""Hex sha256 digest identifying a raw message (see ``compute_fingerprint``)."""


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class TransactionRecord(BaseModel):
    """A classified bank or UPI transaction, immutable once created.

    ``original_message`` is the text the classifier echoed back for this
    transaction; ``fingerprint`` links the record to the raw message it was
    matched with and is the dedup/merge key of the ledger.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    category: Category
    type: TransactionType
    amount: Decimal
    description: str
    original_message: str
    confidence: float
    date: datetime
    fingerprint: str
    batch_number: int
    raw_sender: str

    @field_validator("confidence")
    @classmethod
    def _confidence_in_unit_interval(cls, v: float) -> float:
        fv = float(v)
        if 0.0 <= fv <= 1.0:
            return fv
        raise ValueError("confidence must be within [0,1]")

    @field_validator("amount")
    @classmethod
    def _amount_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("amount must be non-negative; direction lives in 'type'")
        return v

    @field_validator("date")
    @classmethod
    def _date_is_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("date must be timezone-aware")
        return v


Ledger: TypeAlias = tuple[TransactionRecord, ...]
"""Records unique by fingerprint, sorted by ``date`` descending."""


# ---------------------------------------------------------------------------
# Read-side projections
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WindowSummary:
    """Rollup of the ledger slice dated on or after a window start."""

    total_count: int
    total_credit: Decimal
    total_debit: Decimal
    net: Decimal
    transactions: tuple[TransactionRecord, ...]
    top: tuple[TransactionRecord, ...]


class TransactionWindows(NamedTuple):
    today: WindowSummary
    week: WindowSummary
    month: WindowSummary
    quarter: WindowSummary


@dataclass(frozen=True, slots=True)
class CategoryStats:
    total: int = 0
    debits: int = 0
    credits: int = 0
    total_debit_amount: Decimal = Decimal("0")
    total_credit_amount: Decimal = Decimal("0")


@dataclass(frozen=True, slots=True)
class TransactionStats:
    bank: CategoryStats
    upi: CategoryStats


@dataclass(frozen=True, slots=True)
class SyncInfo:
    last_sync: datetime | None
    total_messages: int
    bank_count: int
    upi_count: int


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    batch_number: int
    message_count: int
    records_found: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class RunReport:
    """Summary of one orchestrator run, returned to the caller."""

    force: bool
    messages_read: int = 0
    messages_unseen: int = 0
    batches: list[BatchOutcome] = field(default_factory=list)
    records_added: int = 0
    ledger_size: int = 0

    @property
    def batches_total(self) -> int:
        return len(self.batches)

    @property
    def batches_failed(self) -> int:
        return sum(1 for b in self.batches if not b.ok)

    @property
    def batches_succeeded(self) -> int:
        return self.batches_total - self.batches_failed
