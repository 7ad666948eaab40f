"""
Main Orchestrator for the Finance Ledger

This module ties the components together and owns the periodic sweep.

Wiring:
    storage bundle ─┬─ BudgetAggregator ─┐
                    ├─ NotificationDeduper ─┴─ TransactionLedgerGateway
                    │                              │
                    └──────────── ScheduledTransactionProcessor ── SweepRunner

DESIGN DECISION: the core never reads the wall clock or sleeps.
`ScheduledTransactionProcessor.sweep(now)` is a plain function of time and
storage; `SweepRunner` is the only place that knows about intervals, and it
refuses to start a sweep while the previous one is still running.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from finance_ledger.audit import AuditLogger
from finance_ledger.budgets import BudgetAggregator, BudgetManager
from finance_ledger.config import get_settings
from finance_ledger.models.schedule import SweepResult
from finance_ledger.notifications import NotificationDeduper, NotificationInbox
from finance_ledger.scheduling import ScheduledTransactionProcessor, ScheduleManager
from finance_ledger.services.ledger import TransactionLedgerGateway
from finance_ledger.services.storage import (
    StorageBundle,
    create_google_sheets_storage,
    create_in_memory_storage,
)


logger = structlog.get_logger(__name__)


class SweepRunner:
    """
    Tick source for the scheduled transaction processor.

    Usage:
        runner = SweepRunner(processor, interval_seconds=60)
        await runner.run_once(now)       # one deterministic sweep
        task = asyncio.create_task(runner.run_forever())
        runner.stop()
    """

    def __init__(
        self,
        processor: ScheduledTransactionProcessor,
        interval_seconds: float,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._processor = processor
        self._interval = interval_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()

    @property
    def is_sweeping(self) -> bool:
        return self._lock.locked()

    async def run_once(self, now: Optional[datetime] = None) -> Optional[SweepResult]:
        """
        Run one sweep unless another one is still in progress.

        Returns:
            The sweep result, or None if the tick was skipped
        """
        if self._lock.locked():
            logger.warning("sweep_tick_skipped", reason="previous sweep still running")
            return None
        async with self._lock:
            return await self._processor.sweep(now or self._clock())

    async def _tick(self) -> None:
        try:
            await self.run_once()
        except Exception as e:
            # A failed tick (e.g. storage unreachable) must not stop the loop
            logger.error("sweep_tick_failed", error=str(e), exc_info=True)

    async def run_forever(self) -> None:
        """Start a sweep every interval until `stop()` is called."""
        self._stopping.clear()
        logger.info("sweep_runner_started", interval_seconds=self._interval)
        while not self._stopping.is_set():
            task = asyncio.create_task(self._tick())
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

        if self._in_flight:
            await asyncio.gather(*self._in_flight)
        logger.info("sweep_runner_stopped")

    def stop(self) -> None:
        self._stopping.set()


@dataclass
class AppComponents:
    """Everything a caller needs to drive the ledger."""

    storage: StorageBundle
    audit_logger: AuditLogger
    aggregator: BudgetAggregator
    deduper: NotificationDeduper
    ledger: TransactionLedgerGateway
    processor: ScheduledTransactionProcessor
    schedules: ScheduleManager
    budgets: BudgetManager
    inbox: NotificationInbox
    runner: SweepRunner


def _create_storage(backend: str) -> StorageBundle:
    if backend == "google_sheets":
        try:
            return create_google_sheets_storage()
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", backend=backend, error=str(e))
    return create_in_memory_storage()


def create_app_components(
    storage: Optional[StorageBundle] = None,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        storage: Storage bundle to use. When omitted the backend named by
                 the app settings is created.
        clock: Time source for the sweep runner
    """
    settings = get_settings()
    scheduler_settings = settings.scheduler

    if storage is None:
        storage = _create_storage(settings.app.storage_backend)

    audit_logger = AuditLogger(storage.audit)
    aggregator = BudgetAggregator(storage.budgets, storage.transactions, audit_logger)
    deduper = NotificationDeduper(storage.notifications, audit_logger)
    ledger = TransactionLedgerGateway(storage, aggregator, deduper, audit_logger)
    processor = ScheduledTransactionProcessor(
        storage,
        ledger,
        audit_logger=audit_logger,
        item_timeout_seconds=scheduler_settings.item_timeout_seconds,
    )

    return AppComponents(
        storage=storage,
        audit_logger=audit_logger,
        aggregator=aggregator,
        deduper=deduper,
        ledger=ledger,
        processor=processor,
        schedules=ScheduleManager(
            storage,
            audit_logger=audit_logger,
            upcoming_window_days=scheduler_settings.upcoming_window_days,
        ),
        budgets=BudgetManager(
            storage.budgets,
            storage.categories,
            aggregator,
            deduper,
            default_threshold=settings.budgets.default_notification_threshold,
        ),
        inbox=NotificationInbox(storage.notifications),
        runner=SweepRunner(
            processor,
            interval_seconds=scheduler_settings.sweep_interval_seconds,
            clock=clock,
        ),
    )
