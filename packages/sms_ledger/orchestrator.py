"""Sync orchestrator: the single entry point that runs the pipeline.

One :class:`SyncOrchestrator` instance owns the in-memory ledger snapshot,
the progress log and the ``processing``/``loading`` flags. Callers construct
it explicitly (or through :meth:`SyncOrchestrator.from_settings`) and pass it
to whatever needs it; there is no module-level state.

Run sequence (``refresh``/``force_refresh``):

1. Accept only when idle. ``processing`` is checked and set with no
   ``await`` in between, which makes it a non-reentrant lock on one event
   loop.
2. Clear the progress log. Load the persisted ledger, or for a force refresh
   clear all persisted state and the snapshot first.
3. Ask the source for permission (``PermissionDenied`` aborts the run) and
   list recent messages with bounded retries.
4. Optionally prefilter, then drop messages the dedup index has seen.
5. For each batch, strictly in order: classify, validate, match, build
   records, merge, persist, commit fingerprints. A failed batch still commits
   its fingerprints so it is not re-offered on the next run.
6. Log a summary line and return to idle.

Only work from fully completed batches is durable. Cancelling a run discards
the in-flight batch; the dedup index re-offers those messages next time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from types import TracebackType

from . import aggregate
from .batching import BatchScheduler, Sleep, partition
from .candidates import build_records, validate_candidates
from .classify import ClassificationClient, RetryPolicy
from .config import PipelineSettings
from .errors import BatchFailure, MessageSourceError, PermissionDenied, SmsLedgerError
from .logging_setup import get_logger
from .models import (
    BatchOutcome,
    Category,
    Ledger,
    RawMessage,
    RunReport,
    SyncInfo,
    TransactionStats,
    TransactionWindows,
)
from .persistence import DedupIndex, LedgerStore, merge_ledger, slice_ledger
from .prefilter import prefilter_messages
from .sources import MessageSource
from .transports import ClassifierTransport, build_transport

_logger = get_logger("sms_ledger.orchestrator")


class ProgressLog:
    """Append-only list of human-readable progress lines for the current run.

    Every line is mirrored to the package logger at INFO.
    """

    def __init__(self) -> None:
        self._lines: list[str] = []

    def append(self, line: str) -> None:
        self._lines.append(line)
        _logger.info("sync:progress %s", line)

    def clear(self) -> None:
        self._lines.clear()

    @property
    def lines(self) -> tuple[str, ...]:
        return tuple(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._lines))

    def __len__(self) -> int:
        return len(self._lines)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncOrchestrator:
    def __init__(
        self,
        *,
        source: MessageSource,
        client: ClassificationClient,
        store: LedgerStore,
        dedup: DedupIndex,
        settings: PipelineSettings | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source = source
        self._client = client
        self._store = store
        self._dedup = dedup
        self._settings = settings or PipelineSettings()
        self._sleep = sleep
        self._clock = clock
        self._scheduler = BatchScheduler(
            base=self._settings.delay_base_sec,
            step=self._settings.delay_step_sec,
            cap=self._settings.delay_cap_sec,
            sleep=sleep,
        )
        self._ledger: Ledger = ()
        self._processing = False
        self._loading = False
        self.progress_log = ProgressLog()

    @classmethod
    def from_settings(
        cls,
        settings: PipelineSettings,
        *,
        source: MessageSource,
        transport: ClassifierTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> SyncOrchestrator:
        """Wire store, dedup index and classification client from ``settings``."""

        client = ClassificationClient(
            transport or build_transport(settings),
            policy=RetryPolicy.from_settings(settings),
            sleep=sleep,
        )
        return cls(
            source=source,
            client=client,
            store=LedgerStore(settings.database_url),
            dedup=DedupIndex(
                settings.database_url, prefix_chars=settings.fingerprint_prefix_chars
            ),
            settings=settings,
            sleep=sleep,
        )

    # ---- read API --------------------------------------------------------

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def bank_slice(self) -> Ledger:
        return slice_ledger(self._ledger, Category.BANK)

    @property
    def upi_slice(self) -> Ledger:
        return slice_ledger(self._ledger, Category.UPI)

    def load_ledger(self) -> Ledger:
        """Replace the snapshot with the persisted ledger (no-op while a run is active)."""

        if not self._processing:
            self._ledger = self._store.load()
        return self._ledger

    def get_sync_info(self) -> SyncInfo:
        return SyncInfo(
            last_sync=self._store.last_sync(),
            total_messages=len(self._ledger),
            bank_count=len(self.bank_slice),
            upi_count=len(self.upi_slice),
        )

    def get_transaction_stats(self) -> TransactionStats:
        return aggregate.transaction_stats(self._ledger)

    def transaction_windows(self, now: datetime | None = None) -> TransactionWindows:
        return aggregate.transaction_windows(self._ledger, now)

    # ---- runs ------------------------------------------------------------

    async def refresh(self) -> RunReport | None:
        """Run an incremental sync; ``None`` when a run is already in flight."""

        return await self._run(force=False)

    async def force_refresh(self) -> RunReport | None:
        """Clear all persisted state, then run a full sync."""

        return await self._run(force=True)

    async def _run(self, *, force: bool) -> RunReport | None:
        if self._processing:
            _logger.info("sync:skipped reason=already_running force=%s", force)
            return None
        self._processing = True
        self._loading = True
        try:
            return await self._execute(force=force)
        finally:
            self._processing = False
            self._loading = False

    async def _execute(self, *, force: bool) -> RunReport:
        settings = self._settings
        report = RunReport(force=force)
        self.progress_log.clear()

        if force:
            self.progress_log.append("Force refresh: clearing cached transactions")
            self._store.clear_all()
            self._ledger = ()
        else:
            self._ledger = self._store.load()

        try:
            await self._source.request_permission()
        except PermissionDenied as e:
            self.progress_log.append(f"✗ Permission denied: {e}")
            raise
        messages = await self._fetch_messages()
        report.messages_read = len(messages)
        if settings.prefilter:
            messages = prefilter_messages(messages)

        unseen = self._dedup.filter_unseen(messages)
        report.messages_unseen = len(unseen)
        self._loading = False
        _logger.info(
            "sync:start force=%s read=%d unseen=%d ledger=%d",
            force,
            report.messages_read,
            report.messages_unseen,
            len(self._ledger),
        )

        if not unseen:
            self.progress_log.append("No new messages to process")
        batches = partition(unseen, settings.batch_size) if unseen else []
        async for batch in self._scheduler.run(batches):
            self.progress_log.append(
                f"Processing batch {batch.number}/{batch.total} ({len(batch)} messages)"
            )
            fingerprints = [self._dedup.fingerprint(m) for m in batch.messages]
            try:
                raw_candidates = await self._client.classify(batch)
            except BatchFailure as e:
                report.batches.append(
                    BatchOutcome(batch.number, len(batch), records_found=0, error=e.reason)
                )
                self.progress_log.append(f"✗ Batch {batch.number} failed: {e.reason}")
                self._dedup.commit(fingerprints)
                continue

            candidates = validate_candidates(raw_candidates, batch_number=batch.number)
            records = build_records(
                candidates, batch, prefix_chars=settings.fingerprint_prefix_chars
            )
            merged = merge_ledger(self._ledger, records)
            added = len(merged) - len(self._ledger)
            self._store.persist(merged, synced_at=self._clock())
            self._dedup.commit(fingerprints)
            self._ledger = merged

            report.records_added += added
            report.batches.append(BatchOutcome(batch.number, len(batch), records_found=len(records)))
            self.progress_log.append(f"✓ Batch {batch.number}: Found {len(records)} transactions")

        self._store.persist(self._ledger, synced_at=self._clock())
        report.ledger_size = len(self._ledger)
        self.progress_log.append(
            f"Sync complete: {report.batches_succeeded}/{report.batches_total} batches succeeded, "
            f"{report.records_added} new transactions, {report.ledger_size} total"
        )
        _logger.info(
            "sync:done force=%s batches=%d failed=%d added=%d ledger=%d",
            force,
            report.batches_total,
            report.batches_failed,
            report.records_added,
            report.ledger_size,
        )
        return report

    async def _fetch_messages(self) -> list[RawMessage]:
        settings = self._settings
        since = self._clock() - timedelta(days=settings.lookback_days)
        since_ms = int(since.timestamp() * 1000)
        attempt = 0
        while True:
            try:
                return await self._source.list_messages(since_ms, settings.max_messages)
            except PermissionDenied as e:
                self.progress_log.append(f"✗ Permission denied: {e}")
                raise
            except Exception as e:  # noqa: BLE001
                if attempt >= settings.source_retries:
                    self.progress_log.append(f"✗ Failed to read messages: {e}")
                    raise MessageSourceError(
                        f"reading messages failed after {attempt + 1} attempts: {e}"
                    ) from e
                attempt += 1
                delay = settings.source_backoff_sec * attempt
                _logger.warning(
                    "sync:source_retry attempt=%d error=%s delay_sec=%.2f",
                    attempt,
                    e.__class__.__name__,
                    delay,
                )
                await self._sleep(delay)


class AutoRefresher:
    """Periodic ``refresh()`` as an owned, cancellable asyncio task.

    Ticks that land while a run is in flight are no-ops through the
    orchestrator's single-flight guard. A failed run, whatever the error, is
    logged and the next tick still happens.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval_sec: float,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be positive")
        self._orchestrator = orchestrator
        self._interval = interval_sec
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name="sms-ledger-auto-refresh"
        )
        _logger.info("auto_refresh:started interval_sec=%.1f", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        _logger.info("auto_refresh:stopped ticks=%d", self.ticks)

    async def _loop(self) -> None:
        while True:
            self.ticks += 1
            try:
                await self._orchestrator.refresh()
            except SmsLedgerError as e:
                _logger.error("auto_refresh:run_failed error=%s detail=%s", e.__class__.__name__, e)
            except Exception as e:  # noqa: BLE001 - keep the periodic task alive
                _logger.error(
                    "auto_refresh:run_failed error=%s detail=%s",
                    e.__class__.__name__,
                    e,
                    exc_info=True,
                )
            await self._sleep(self._interval)

    async def __aenter__(self) -> AutoRefresher:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()


__all__ = ["AutoRefresher", "ProgressLog", "SyncOrchestrator"]
