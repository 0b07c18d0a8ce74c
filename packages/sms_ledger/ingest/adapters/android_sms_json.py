"""Adapter for Android SMS inbox exports in JSON.

The export is the array produced by the common ``react-native-get-sms-android``
/ "SMS Backup" style dumps: one object per message with at least

``{"address": "VM-HDFCBK", "date": "1718000000000", "body": "..."}``

``date`` is epoch milliseconds, as a string or a number. Other keys
(``_id``, ``thread_id``, ``read``, ...) are ignored. A top-level object with a
``messages`` array is accepted as well.

Rows missing ``address``, ``body`` or a parseable ``date`` are skipped and
counted; the caller decides whether that matters.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, TextIO

from ...models import RawMessage


def _timestamp_ms(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def to_raw_messages(items: Iterable[Mapping[str, Any]]) -> Iterator[RawMessage]:
    for item in items:
        if not isinstance(item, Mapping):
            continue
        sender = item.get("address")
        body = item.get("body")
        ts = _timestamp_ms(item.get("date"))
        if not isinstance(sender, str) or not sender.strip():
            continue
        if not isinstance(body, str) or ts is None:
            continue
        yield RawMessage(sender=sender.strip(), timestamp_ms=ts, body=body)


def read_android_sms_json(f: TextIO) -> list[RawMessage]:
    """Parse an open JSON export. Raises ``ValueError`` when the shape is wrong."""

    data = json.load(f)
    if isinstance(data, Mapping):
        data = data.get("messages")
    if not isinstance(data, list):
        raise ValueError("Android SMS export must be a JSON array of message objects")
    return list(to_raw_messages(data))


__all__ = ["read_android_sms_json", "to_raw_messages"]
