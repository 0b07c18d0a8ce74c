from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

import sms_ledger.orchestrator as orchestrator_mod
from sms_ledger.cli import app

from tests.helpers.classifier_stub import EchoTransport, debit_everything
from tests.helpers.db import bootstrap_sqlite_db

_EXPORT = Path(__file__).resolve().parent / "data" / "android_sms_export.json"

runner = CliRunner()


@pytest.fixture
def db_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.chdir(tmp_path)
    return bootstrap_sqlite_db(tmp_path / "cli.sqlite3")


def test_summary_and_stats_on_empty_ledger(db_url: str):
    result = runner.invoke(app, ["summary", "--database-url", db_url])
    assert result.exit_code == 0, result.output
    assert "Transaction windows" in result.output
    assert "No transactions today." in result.output

    result = runner.invoke(app, ["stats", "--database-url", db_url])
    assert result.exit_code == 0, result.output
    assert "last sync: never; transactions: 0" in result.output


def test_sync_requires_api_key(db_url: str):
    result = runner.invoke(app, ["sync", "--messages", str(_EXPORT), "--database-url", db_url])
    assert result.exit_code == 1


def test_sync_reports_missing_export(db_url: str, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    result = runner.invoke(
        app, ["sync", "--messages", str(tmp_path / "missing.json"), "--database-url", db_url]
    )
    assert result.exit_code == 1


def test_sync_then_stats(db_url: str, monkeypatch: pytest.MonkeyPatch):
    transport = EchoTransport(debit_everything)
    monkeypatch.setattr(orchestrator_mod, "build_transport", lambda settings: transport)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("SMS_LEDGER_LOOKBACK_DAYS", "100000")

    result = runner.invoke(app, ["sync", "--messages", str(_EXPORT), "--database-url", db_url])
    assert result.exit_code == 0, result.output
    assert "Sync complete: 1/1 batches succeeded, 2 new transactions, 2 total" in result.output
    # the prefilter drops the personal message before classification
    assert [m["sender"] for m in transport.batches[0]] == ["AD-SBIINB", "VM-HDFCBK"]

    result = runner.invoke(app, ["stats", "--database-url", db_url])
    assert result.exit_code == 0, result.output
    assert "transactions: 2" in result.output


def test_clear_with_yes(db_url: str):
    result = runner.invoke(app, ["clear", "--database-url", db_url, "--yes"])
    assert result.exit_code == 0, result.output
    assert "Cleared." in result.output
