"""Adapter for flat CSV message exports.

Header (exact keys expected, extra columns ignored):
``sender, timestamp_ms, body``

``timestamp_ms`` is epoch milliseconds. Bodies may contain embedded newlines
when quoted; they are kept verbatim because the fingerprint covers the body.
"""

from __future__ import annotations

import csv
from collections.abc import Iterable, Iterator, Mapping
from typing import TextIO

from ...models import RawMessage

REQUIRED_COLUMNS: set[str] = {"sender", "timestamp_ms", "body"}


def to_raw_messages(rows: Iterable[Mapping[str, str]]) -> Iterator[RawMessage]:
    for row in rows:
        sender = (row.get("sender") or "").strip()
        ts_raw = (row.get("timestamp_ms") or "").strip()
        body = row.get("body")
        if not sender or body is None or not ts_raw.isdigit():
            continue
        yield RawMessage(sender=sender, timestamp_ms=int(ts_raw), body=body)


def read_sms_csv(f: TextIO) -> list[RawMessage]:
    """Parse an open CSV export; raises ``csv.Error`` on a header mismatch."""

    reader = csv.DictReader(f)
    headers = set(reader.fieldnames or [])
    if not headers:
        raise csv.Error("CSV appears to have no header row")
    missing = sorted(REQUIRED_COLUMNS - headers)
    if missing:
        raise csv.Error("CSV header mismatch for SMS export. Missing columns: " + ", ".join(missing))
    return list(to_raw_messages(reader))


__all__ = ["REQUIRED_COLUMNS", "read_sms_csv", "to_raw_messages"]
