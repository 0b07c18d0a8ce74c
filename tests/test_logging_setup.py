from __future__ import annotations

import logging

import pytest

from sms_ledger.logging_setup import _parse_level, get_logger


@pytest.mark.parametrize(
    "level, expected",
    [
        (logging.DEBUG, logging.DEBUG),
        ("warning", logging.WARNING),
        (" 15 ", 15),
        ("bogus", logging.INFO),
    ],
)
def test_parse_level(level, expected):
    assert _parse_level(level) == expected


def test_parse_level_reads_env_when_unset(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SMS_LEDGER_LOG_LEVEL", "ERROR")
    assert _parse_level(None) == logging.ERROR
    monkeypatch.delenv("SMS_LEDGER_LOG_LEVEL")
    assert _parse_level(None) == logging.INFO


def test_get_logger_returns_package_child():
    logger = get_logger("sms_ledger.classify")
    assert logger.name == "sms_ledger.classify"
    assert logger.parent is logging.getLogger("sms_ledger")
