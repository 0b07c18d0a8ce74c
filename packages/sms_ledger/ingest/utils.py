"""Ingest utilities shared by the CLI and file-backed message sources.

Exposes a single helper that loads raw messages from an export file, picking
the adapter from the file contents rather than the extension: JSON exports
start with ``[`` or ``{``, everything else is read as CSV.
"""

from __future__ import annotations

from os import PathLike
from pathlib import Path

from ..logging_setup import get_logger
from ..models import RawMessage

_logger = get_logger("sms_ledger.ingest")


def load_messages(path: str | PathLike[str]) -> list[RawMessage]:
    """Read an Android SMS JSON export or a ``sender,timestamp_ms,body`` CSV.

    Raises ``FileNotFoundError``/``PermissionError`` from the filesystem,
    ``ValueError`` for malformed JSON and ``csv.Error`` for a bad CSV header.
    """

    from .adapters.android_sms_json import read_android_sms_json
    from .adapters.sms_csv import read_sms_csv

    p = Path(path)
    with p.open(encoding="utf-8-sig", newline="") as f:
        head = f.read(4096).lstrip()
        f.seek(0)
        if head.startswith(("[", "{")):
            messages = read_android_sms_json(f)
            fmt = "android_json"
        else:
            messages = read_sms_csv(f)
            fmt = "csv"
    _logger.info("ingest:loaded path=%s format=%s messages=%d", p, fmt, len(messages))
    return messages


__all__ = ["load_messages"]
