# ruff: noqa: I001
"""Persistence integration for sms_ledger.

Functions here fingerprint raw messages and keep the ledger, its BANK/UPI
projections, the dedup index and the last-sync marker in the shared key/value
table owned by ``libs/db``.

Scope:
- ``compute_fingerprint``: stable content hash of a raw message.
- ``merge_ledger``: pure union of two record lists, unique by fingerprint.
- ``LedgerStore``: load/persist/clear the ledger as one logical transaction.
- ``DedupIndex``: the set of fingerprints already offered to the classifier.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from db.client import ensure_schema, session_scope
from db.kv import kv_delete_many, kv_get, kv_set
from .logging_setup import get_logger
from .models import Category, Ledger, RawMessage, TransactionRecord

# Well-known keys in ``sl_kv_entries``
LEDGER_KEY = "ledger:all"
BANK_SLICE_KEY = "ledger:bank"
UPI_SLICE_KEY = "ledger:upi"
DEDUP_KEY = "dedup:fingerprints"
LAST_SYNC_KEY = "sync:last"

ALL_KEYS: tuple[str, ...] = (LEDGER_KEY, BANK_SLICE_KEY, UPI_SLICE_KEY, DEDUP_KEY, LAST_SYNC_KEY)

_DEFAULT_PREFIX_CHARS = 50

_logger = get_logger("sms_ledger.persistence")


def compute_fingerprint(message: RawMessage, *, prefix_chars: int = _DEFAULT_PREFIX_CHARS) -> str:
    """Compute a stable SHA-256 fingerprint over canonical message fields.

    Fields used: sender, timestamp (ms), and the first ``prefix_chars``
    characters of the body. Two messages from the same sender in the same
    millisecond that differ only after the prefix collide; this is an accepted
    approximation.
    """

    payload = {
        "sender": message.sender,
        "timestamp_ms": int(message.timestamp_ms),
        "body_prefix": message.body[:prefix_chars],
    }
    # Ensure deterministic JSON serialization
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def merge_ledger(
    existing: Iterable[TransactionRecord], incoming: Iterable[TransactionRecord]
) -> Ledger:
    """Union two record lists: first occurrence per fingerprint wins, newest first."""

    seen: set[str] = set()
    merged: list[TransactionRecord] = []
    for record in (*existing, *incoming):
        if record.fingerprint in seen:
            continue
        seen.add(record.fingerprint)
        merged.append(record)
    # ``sorted`` is stable, so equal dates keep their first-seen order.
    return tuple(sorted(merged, key=lambda r: r.date, reverse=True))


def slice_ledger(ledger: Iterable[TransactionRecord], category: Category) -> Ledger:
    return tuple(r for r in ledger if r.category == category)


def _dump(records: Iterable[TransactionRecord]) -> list[dict[str, Any]]:
    return [r.model_dump(mode="json") for r in records]


def _load(raw: Any, *, key: str) -> Ledger:
    if not isinstance(raw, list):
        return ()
    out: list[TransactionRecord] = []
    for i, item in enumerate(raw):
        try:
            out.append(TransactionRecord.model_validate(item))
        except ValidationError:
            _logger.warning("ledger:load_skip key=%s position=%d", key, i, exc_info=True)
    return tuple(out)


class LedgerStore:
    """Reads and writes the persisted ledger and its projections."""

    def __init__(self, database_url: str | None = None, *, create_schema: bool = True) -> None:
        self._database_url = database_url
        if create_schema:
            ensure_schema(database_url=database_url)

    @property
    def database_url(self) -> str | None:
        return self._database_url

    def load(self) -> Ledger:
        with session_scope(database_url=self._database_url) as session:
            raw = kv_get(session, LEDGER_KEY, [])
        return _load(raw, key=LEDGER_KEY)

    def load_slice(self, category: Category) -> Ledger:
        key = BANK_SLICE_KEY if category == Category.BANK else UPI_SLICE_KEY
        with session_scope(database_url=self._database_url) as session:
            raw = kv_get(session, key, [])
        return _load(raw, key=key)

    def last_sync(self) -> datetime | None:
        with session_scope(database_url=self._database_url) as session:
            raw = kv_get(session, LAST_SYNC_KEY)
        if not isinstance(raw, str):
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None

    def persist(self, ledger: Sequence[TransactionRecord], *, synced_at: datetime | None = None) -> None:
        """Write projections, then the full ledger, then the sync marker.

        All four writes share one database transaction, so readers never see
        projections that disagree with the full ledger.
        """

        stamp = (synced_at or datetime.now(UTC)).isoformat()
        with session_scope(database_url=self._database_url) as session:
            kv_set(session, BANK_SLICE_KEY, _dump(slice_ledger(ledger, Category.BANK)))
            kv_set(session, UPI_SLICE_KEY, _dump(slice_ledger(ledger, Category.UPI)))
            kv_set(session, LEDGER_KEY, _dump(ledger))
            kv_set(session, LAST_SYNC_KEY, stamp)
        _logger.debug("ledger:persisted size=%d synced_at=%s", len(ledger), stamp)

    def clear_all(self) -> None:
        """Remove ledger, projections, dedup index and sync marker together."""

        with session_scope(database_url=self._database_url) as session:
            deleted = kv_delete_many(session, ALL_KEYS)
        _logger.info("ledger:cleared entries=%d", deleted)


class DedupIndex:
    """Persisted set of fingerprints of messages already sent to the classifier."""

    def __init__(
        self,
        database_url: str | None = None,
        *,
        prefix_chars: int = _DEFAULT_PREFIX_CHARS,
        create_schema: bool = True,
    ) -> None:
        self._database_url = database_url
        self._prefix_chars = prefix_chars
        if create_schema:
            ensure_schema(database_url=database_url)

    def fingerprint(self, message: RawMessage) -> str:
        return compute_fingerprint(message, prefix_chars=self._prefix_chars)

    def seen(self) -> frozenset[str]:
        with session_scope(database_url=self._database_url) as session:
            raw = kv_get(session, DEDUP_KEY, [])
        if not isinstance(raw, list):
            return frozenset()
        return frozenset(fp for fp in raw if isinstance(fp, str))

    def filter_unseen(self, messages: Iterable[RawMessage]) -> list[RawMessage]:
        """Keep messages whose fingerprint is not yet in the index, in input order.

        Repeats within ``messages`` itself are collapsed to their first
        occurrence so a batch never carries the same message twice.
        """

        seen = set(self.seen())
        out: list[RawMessage] = []
        for m in messages:
            fp = self.fingerprint(m)
            if fp in seen:
                continue
            seen.add(fp)
            out.append(m)
        return out

    def commit(self, fingerprints: Iterable[str]) -> int:
        """Union-insert ``fingerprints``; returns how many were new."""

        new = list(dict.fromkeys(fingerprints))
        if not new:
            return 0
        with session_scope(database_url=self._database_url) as session:
            raw = kv_get(session, DEDUP_KEY, [])
            current: list[str] = [fp for fp in raw if isinstance(fp, str)] if isinstance(raw, list) else []
            known = set(current)
            added = [fp for fp in new if fp not in known]
            if added:
                kv_set(session, DEDUP_KEY, current + added)
        return len(added)

    def clear(self) -> None:
        with session_scope(database_url=self._database_url) as session:
            kv_delete_many(session, [DEDUP_KEY])


__all__ = [
    "ALL_KEYS",
    "DedupIndex",
    "LedgerStore",
    "compute_fingerprint",
    "merge_ledger",
    "slice_ledger",
]
