from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: sl_kv_entries
# ---------------------------


class SlKvEntry(Base):
    """One persisted entry of the ledger key/value store.

    The sync pipeline keeps a handful of well-known keys here (full ledger,
    BANK/UPI projections, dedup fingerprints, last-sync marker). Values are
    JSON documents. Ledger records carry the message text the classifier
    echoed back (``originalMessage``); full inbox exports are never stored.
    """

    __tablename__ = "sl_kv_entries"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


__all__ = [
    "Base",
    "SlKvEntry",
]
