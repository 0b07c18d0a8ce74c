"""Logging for ``sms_ledger``.

Every module logs through ``get_logger("sms_ledger.<module>")`` using
``component:event key=value`` messages (``classify:batch_retry``,
``sync:progress``, ...). Only the CLI calls :func:`configure_logging`; when
the package is used as a library it stays silent until the host configures
logging.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

LOGGER_NAME = "sms_ledger"
LEVEL_ENV = "SMS_LEDGER_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured = False


def _parse_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(LEVEL_ENV)
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.strip():
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelName(name)
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Send ``sms_ledger`` logs to ``stream``; later calls are no-ops.

    ``level`` falls back to ``SMS_LEDGER_LOG_LEVEL`` and then INFO. Records do
    not propagate to the root logger.
    """

    global _configured
    if _configured:
        return

    logger = logging.getLogger(LOGGER_NAME)
    for h in [h for h in logger.handlers if isinstance(h, logging.NullHandler)]:
        logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Child logger of ``sms_ledger``; a ``NullHandler`` keeps it quiet until configured."""

    root = logging.getLogger(LOGGER_NAME)
    if not _configured and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)
