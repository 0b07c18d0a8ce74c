"""Key/value operations over ``sl_kv_entries``.

All helpers take an active session so callers decide the transaction
boundary; grouping several writes in one ``session_scope`` makes them land
together or not at all.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .models.ledger import SlKvEntry


def kv_get(session: Session, key: str, default: Any = None) -> Any:
    """Return the JSON value stored under ``key`` or ``default`` when absent."""

    row = session.execute(select(SlKvEntry.value).where(SlKvEntry.key == key)).first()
    if row is None:
        return default
    return row[0]


def kv_set(session: Session, key: str, value: Any) -> None:
    """Insert or replace the value stored under ``key``."""

    existing = session.get(SlKvEntry, key)
    if existing is None:
        session.add(SlKvEntry(key=key, value=value))
    else:
        existing.value = value
    session.flush()


def kv_delete_many(session: Session, keys: Iterable[str]) -> int:
    """Delete every entry in ``keys``; missing keys are ignored. Returns rows deleted."""

    key_list = list(dict.fromkeys(keys))
    if not key_list:
        return 0
    result = session.execute(delete(SlKvEntry).where(SlKvEntry.key.in_(key_list)))
    return int(result.rowcount or 0)


__all__ = ["kv_delete_many", "kv_get", "kv_set"]
