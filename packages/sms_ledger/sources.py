"""Message sources: where raw SMS records come from.

A source needs a one-time permission grant (``request_permission``) before it
can be listed. Denial is fatal for the run and surfaced as
:class:`PermissionDenied`; any other read failure is an ``OSError``/``ValueError``
that the orchestrator retries a bounded number of times.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Sequence
from os import PathLike
from pathlib import Path
from typing import Protocol

from .errors import PermissionDenied
from .ingest.utils import load_messages
from .models import RawMessage


class MessageSource(Protocol):
    async def request_permission(self) -> None: ...

    async def list_messages(self, min_timestamp_ms: int, max_count: int) -> list[RawMessage]: ...


def select_recent(
    messages: Iterable[RawMessage], min_timestamp_ms: int, max_count: int
) -> list[RawMessage]:
    """Newest-first messages at or after ``min_timestamp_ms``, at most ``max_count``."""

    recent = [m for m in messages if m.timestamp_ms >= min_timestamp_ms]
    recent.sort(key=lambda m: m.timestamp_ms, reverse=True)
    return recent[: max(0, max_count)]


class StaticMessageSource:
    """In-memory source, used by tests and by callers that already hold messages."""

    def __init__(self, messages: Sequence[RawMessage] = (), *, granted: bool = True) -> None:
        self.messages: list[RawMessage] = list(messages)
        self.granted = granted
        self.list_calls = 0

    async def request_permission(self) -> None:
        if not self.granted:
            raise PermissionDenied("read access to messages was not granted")

    async def list_messages(self, min_timestamp_ms: int, max_count: int) -> list[RawMessage]:
        self.list_calls += 1
        return select_recent(self.messages, min_timestamp_ms, max_count)


class ExportFileMessageSource:
    """Read messages from an inbox export file (Android JSON or CSV).

    The file is re-read on every listing so a refreshed export is picked up
    by the next sync.
    """

    def __init__(self, path: str | PathLike[str]) -> None:
        self.path = Path(path)

    async def request_permission(self) -> None:
        if not self.path.exists():
            raise PermissionDenied(f"message export not found: {self.path}")
        if not os.access(self.path, os.R_OK):
            raise PermissionDenied(f"message export is not readable: {self.path}")

    async def list_messages(self, min_timestamp_ms: int, max_count: int) -> list[RawMessage]:
        try:
            messages = load_messages(self.path)
        except PermissionError as e:
            raise PermissionDenied(f"message export is not readable: {self.path}") from e
        return select_recent(messages, min_timestamp_ms, max_count)


__all__ = ["ExportFileMessageSource", "MessageSource", "StaticMessageSource", "select_recent"]
