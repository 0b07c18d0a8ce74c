# ruff: noqa: I001
"""CLI for the ``sms_ledger`` package.

Typer-based console interface over :class:`SyncOrchestrator`. Environment
variables (``GEMINI_API_KEY``/``OPENAI_API_KEY``, ``DATABASE_URL``,
``SMS_LEDGER_*``) are loaded from a local ``.env`` using ``python-dotenv``
before any command runs. Output is rendered with ``rich``.
"""

from __future__ import annotations

import asyncio
import os
from decimal import Decimal
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from typer.models import OptionInfo

from .analytics import bank_analytics
from .config import PipelineSettings
from .errors import MessageSourceError, PermissionDenied
from .logging_setup import configure_logging
from .models import RunReport, WindowSummary
from .orchestrator import AutoRefresher, SyncOrchestrator
from .persistence import LedgerStore
from .sources import ExportFileMessageSource, StaticMessageSource

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///sms_ledger.sqlite3"

_API_KEY_ENV = {"gemini": "GEMINI_API_KEY", "openai": "OPENAI_API_KEY"}

console = Console()
err_console = Console(stderr=True)


# ---- Helpers -----------------------------------------------------------------


def _settings(**overrides: object) -> PipelineSettings:
    settings = PipelineSettings.from_env().with_overrides(**overrides)
    if settings.database_url is None:
        settings = settings.with_overrides(database_url=DEFAULT_DATABASE_URL)
    return settings


def _fail(message: str) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(1)


def _require_api_key(settings: PipelineSettings) -> None:
    env_name = _API_KEY_ENV[settings.backend]
    if not os.getenv(env_name):
        raise _fail(f"{env_name} is not set in the environment.")


def _money(value: Decimal) -> str:
    return f"₹{value:,.2f}"


def _offline_orchestrator(settings: PipelineSettings) -> SyncOrchestrator:
    """Orchestrator for read-only commands: no source messages, no API calls."""

    orchestrator = SyncOrchestrator.from_settings(settings, source=StaticMessageSource())
    orchestrator.load_ledger()
    return orchestrator


def _print_report(report: RunReport, log_lines: tuple[str, ...]) -> None:
    for line in log_lines:
        style = "green" if line.startswith("✓") else "red" if line.startswith("✗") else "cyan"
        console.print(f"[{style}]{line}[/{style}]")
    console.print(
        Panel(
            f"messages read: {report.messages_read}\n"
            f"new messages: {report.messages_unseen}\n"
            f"batches: {report.batches_succeeded}/{report.batches_total} succeeded\n"
            f"transactions added: {report.records_added}\n"
            f"ledger size: {report.ledger_size}",
            title="Force refresh" if report.force else "Sync",
            border_style="red" if report.batches_failed else "green",
        )
    )


def _window_row(name: str, summary: WindowSummary) -> tuple[str, ...]:
    return (
        name,
        str(summary.total_count),
        _money(summary.total_credit),
        _money(summary.total_debit),
        _money(summary.net),
    )


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Build a bank/UPI transaction ledger from SMS exports using an LLM classifier. "
        "Loads API keys and DATABASE_URL from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter defaults).
MESSAGES_OPTION: OptionInfo = typer.Option(
    ...,
    "--messages",
    help="Path to an Android SMS JSON export or a sender,timestamp_ms,body CSV.",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the message source reports a missing file as permission denied
)
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, help="Override DATABASE_URL (falls back to env var, then a local SQLite file)."
)


@app.callback()
def _root(
    log_level: str | None = typer.Option(
        None, help="Log level (defaults to SMS_LEDGER_LOG_LEVEL or INFO)."
    ),
) -> None:
    """Load ``.env`` from the current directory and configure logging once."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


@app.command("sync")
def sync_cmd(
    messages: Annotated[Path, MESSAGES_OPTION],
    *,
    force: bool = typer.Option(False, help="Clear all cached state and reprocess every message."),
    backend: str | None = typer.Option(None, help="Classifier backend: gemini or openai."),
    batch_size: int | None = typer.Option(None, min=1, help="Messages per classifier call."),
    prefilter: bool = typer.Option(
        True, help="Drop messages without a bank sender and transaction keyword first."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Read the export, classify unseen messages and update the ledger."""

    try:
        settings = _settings(
            backend=backend, batch_size=batch_size, prefilter=prefilter, database_url=database_url
        )
    except ValueError as e:
        raise _fail(str(e)) from e
    _require_api_key(settings)

    orchestrator = SyncOrchestrator.from_settings(
        settings, source=ExportFileMessageSource(messages)
    )
    run = orchestrator.force_refresh if force else orchestrator.refresh
    try:
        report = asyncio.run(run())
    except (PermissionDenied, MessageSourceError) as e:
        raise _fail(str(e)) from e
    if report is None:  # pragma: no cover - a fresh orchestrator is always idle
        raise _fail("a sync is already running")
    _print_report(report, orchestrator.progress_log.lines)


@app.command("watch")
def watch_cmd(
    messages: Annotated[Path, MESSAGES_OPTION],
    *,
    interval: float | None = typer.Option(
        None, min=1.0, help="Seconds between syncs (defaults to SMS_LEDGER_AUTO_REFRESH_INTERVAL_SEC)."
    ),
    duration: float | None = typer.Option(
        None, min=0.0, help="Stop after this many seconds (default: run until interrupted)."
    ),
    backend: str | None = typer.Option(None, help="Classifier backend: gemini or openai."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Re-run the sync periodically until interrupted."""

    try:
        settings = _settings(
            backend=backend,
            auto_refresh_interval_sec=interval,
            database_url=database_url,
            prefilter=True,
        )
    except ValueError as e:
        raise _fail(str(e)) from e
    _require_api_key(settings)

    orchestrator = SyncOrchestrator.from_settings(
        settings, source=ExportFileMessageSource(messages)
    )

    async def _watch() -> None:
        async with AutoRefresher(orchestrator, settings.auto_refresh_interval_sec):
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)

    console.print(
        f"[cyan]Watching[/cyan] {messages} every {settings.auto_refresh_interval_sec:.0f}s "
        "(Ctrl-C to stop)"
    )
    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")
    info = orchestrator.get_sync_info()
    console.print(f"ledger size: {info.total_messages} (bank {info.bank_count}, upi {info.upi_count})")


@app.command("summary")
def summary_cmd(database_url: str | None = DATABASE_URL_OPTION) -> None:
    """Show today/week/month/quarter rollups and the most recent transactions."""

    orchestrator = _offline_orchestrator(_settings(database_url=database_url))
    windows = orchestrator.transaction_windows()

    table = Table(title="Transaction windows")
    for col in ("Window", "Count", "Credit", "Debit", "Net"):
        table.add_column(col, justify="left" if col == "Window" else "right")
    for name, summary in windows._asdict().items():
        table.add_row(*_window_row(name, summary))
    console.print(table)

    recent = Table(title="Today")
    for col in ("Time", "Type", "Category", "Amount", "Description"):
        recent.add_column(col)
    for r in windows.today.top:
        recent.add_row(
            r.date.astimezone().strftime("%H:%M"),
            str(r.type),
            str(r.category),
            _money(r.amount),
            r.description,
        )
    if windows.today.top:
        console.print(recent)
    else:
        console.print("[yellow]No transactions today.[/yellow]")


@app.command("stats")
def stats_cmd(database_url: str | None = DATABASE_URL_OPTION) -> None:
    """Show per-category debit/credit totals and the last sync time."""

    orchestrator = _offline_orchestrator(_settings(database_url=database_url))
    info = orchestrator.get_sync_info()
    stats = orchestrator.get_transaction_stats()

    table = Table(title="Transaction stats")
    for col in ("Category", "Total", "Debits", "Credits", "Debit amount", "Credit amount"):
        table.add_column(col, justify="left" if col == "Category" else "right")
    for name, s in (("BANK", stats.bank), ("UPI", stats.upi)):
        table.add_row(
            name,
            str(s.total),
            str(s.debits),
            str(s.credits),
            _money(s.total_debit_amount),
            _money(s.total_credit_amount),
        )
    console.print(table)
    last = info.last_sync.astimezone().strftime("%Y-%m-%d %H:%M") if info.last_sync else "never"
    console.print(f"last sync: {last}; transactions: {info.total_messages}")


@app.command("analytics")
def analytics_cmd(database_url: str | None = DATABASE_URL_OPTION) -> None:
    """Show whole-ledger analytics: totals, monthly and daily trends, breakdowns."""

    orchestrator = _offline_orchestrator(_settings(database_url=database_url))
    a = bank_analytics(orchestrator.ledger)

    console.print(
        Panel(
            f"transactions: {a.transaction_count} "
            f"(credits {a.credit_count}, debits {a.debit_count})\n"
            f"total credit: {_money(a.total_credit)}  avg {_money(a.average_credit)}\n"
            f"total debit: {_money(a.total_debit)}  avg {_money(a.average_debit)}\n"
            f"net balance: {_money(a.net_balance)}\n"
            f"mean confidence: {a.confidence_score:.0%}",
            title="Overview",
            border_style="green" if a.net_balance >= 0 else "red",
        )
    )
    for title, periods in (("Monthly", a.monthly), ("Last active days", a.weekly_trend)):
        table = Table(title=title)
        for col in ("Period", "Count", "Credit", "Debit", "Net"):
            table.add_column(col, justify="left" if col == "Period" else "right")
        for p in periods:
            table.add_row(p.period, str(p.count), _money(p.credit), _money(p.debit), _money(p.net))
        console.print(table)

    breakdown = Table(title="Categories")
    for col in ("Category", "Count", "Credit", "Debit", "Share"):
        breakdown.add_column(col, justify="left" if col == "Category" else "right")
    for c in a.category_breakdown:
        breakdown.add_row(c.category, str(c.count), _money(c.credit), _money(c.debit), f"{c.percentage}%")
    console.print(breakdown)

    top = Table(title="Top descriptions")
    for col in ("Description", "Count", "Total"):
        top.add_column(col, justify="left" if col == "Description" else "right")
    for d in a.top_descriptions:
        top.add_row(d.description, str(d.count), _money(d.total))
    console.print(top)


@app.command("clear")
def clear_cmd(
    database_url: str | None = DATABASE_URL_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete the ledger, its projections, the dedup index and the sync marker."""

    settings = _settings(database_url=database_url)
    if not yes:
        typer.confirm("Delete all cached transactions?", abort=True)
    LedgerStore(settings.database_url).clear_all()
    console.print("[green]Cleared.[/green]")


if __name__ == "__main__":  # pragma: no cover - exercised via the console script
    app()
