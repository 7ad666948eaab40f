"""
Scheduled Transaction Processor

One sweep takes every active schedule due at `now` and handles each one on
its own:

    auto_execute off          -> advance the schedule only (pending approval)
    account missing           -> error, schedule untouched
    expense > account balance -> pause, due date kept for a later retry
    otherwise                 -> advance + create the ledger transaction

Each side-effecting branch starts with a compare-and-swap claim on the
schedule's status and due date, so an overlapping sweep that loaded the
same item gets `skipped` instead of executing it twice. The claim, the new
transaction and its balance change share one atomic scope.

A failing item is recorded as an error and never aborts the sweep. Items
are not retried within a sweep; they stay due for the next one.
"""

import asyncio
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog

from finance_ledger.audit import AuditLogger, create_correlation_id
from finance_ledger.models.ledger import TransactionDraft, TransactionType
from finance_ledger.models.schedule import (
    ScheduledTransaction,
    ScheduleStatus,
    SweepItemDetail,
    SweepOutcome,
    SweepResult,
)
from finance_ledger.scheduling.recurrence import RecurrenceCalculator
from finance_ledger.services.ledger import TransactionLedgerGateway
from finance_ledger.services.storage import NotFoundError, StorageBundle


logger = structlog.get_logger(__name__)


class ScheduledTransactionProcessor:
    """
    Sweeps due recurring transactions.

    Usage:
        processor = ScheduledTransactionProcessor(storage, gateway)
        result = await processor.sweep(datetime.utcnow())
    """

    def __init__(
        self,
        storage: StorageBundle,
        gateway: TransactionLedgerGateway,
        audit_logger: Optional[AuditLogger] = None,
        item_timeout_seconds: Optional[float] = None,
    ):
        """
        Args:
            storage: Storage bundle of the active backend
            gateway: Write path for materialized transactions
            audit_logger: Audit sink; logs locally only when omitted
            item_timeout_seconds: Upper bound for one item, None for no limit
        """
        self._storage = storage
        self._gateway = gateway
        self._audit = audit_logger or AuditLogger()
        self._item_timeout = item_timeout_seconds

    async def sweep(self, now: datetime) -> SweepResult:
        """
        Process every schedule due at `now`.

        Safe to call repeatedly: an item handled by one call is no longer due
        (advanced or paused) for the next call with the same `now`.
        """
        correlation_id = create_correlation_id()
        due = await self._storage.schedules.find_due(now)
        await self._audit.log_sweep_started(now, len(due), correlation_id)

        result = SweepResult(swept_at=now)
        for schedule in due:
            detail = await self._process_guarded(schedule, now, correlation_id)
            result.record(detail)

        await self._audit.log_sweep_completed(result, correlation_id)
        logger.info(
            "sweep_finished",
            now=now.isoformat(),
            due=result.total_due,
            processed=result.processed,
            errors=result.errors,
        )
        return result

    async def _process_guarded(
        self,
        schedule: ScheduledTransaction,
        now: datetime,
        correlation_id: UUID,
    ) -> SweepItemDetail:
        try:
            if self._item_timeout:
                return await asyncio.wait_for(
                    self._process(schedule, now, correlation_id),
                    timeout=self._item_timeout,
                )
            return await self._process(schedule, now, correlation_id)
        except asyncio.TimeoutError:
            message = f"Timed out after {self._item_timeout}s"
        except Exception as e:
            message = str(e) or type(e).__name__

        await self._audit.log_sweep_item_failed(schedule.id, message, correlation_id)
        return SweepItemDetail(
            scheduled_transaction_id=schedule.id,
            outcome=SweepOutcome.ERROR,
            message=message,
        )

    async def _claim(
        self,
        schedule: ScheduledTransaction,
        patch: dict[str, Any],
    ) -> Optional[ScheduledTransaction]:
        return await self._storage.schedules.claim_schedule(
            schedule.id,
            expected_status=ScheduleStatus.ACTIVE,
            expected_next_execution_date=schedule.next_execution_date,
            patch=patch,
        )

    async def _skipped(
        self,
        schedule: ScheduledTransaction,
        correlation_id: UUID,
    ) -> SweepItemDetail:
        await self._audit.log_sweep_item_skipped(schedule.id, correlation_id)
        return SweepItemDetail(
            scheduled_transaction_id=schedule.id,
            outcome=SweepOutcome.SKIPPED,
            message="Already claimed by another sweep",
        )

    async def _process(
        self,
        schedule: ScheduledTransaction,
        now: datetime,
        correlation_id: UUID,
    ) -> SweepItemDetail:
        next_date = RecurrenceCalculator.next_date(
            schedule.next_execution_date,
            schedule.frequency,
            day_of_month=schedule.day_of_month,
            day_of_week=schedule.day_of_week,
        )
        advance = {
            "next_execution_date": next_date,
            "last_execution_date": now,
            "status": schedule.status_after(next_date),
        }

        if not schedule.auto_execute:
            advanced = await self._claim(schedule, advance)
            if advanced is None:
                return await self._skipped(schedule, correlation_id)
            await self._audit.log_schedule_advanced(advanced, correlation_id)
            return SweepItemDetail(
                scheduled_transaction_id=schedule.id,
                outcome=SweepOutcome.PENDING_APPROVAL,
                next_execution_date=next_date,
            )

        account = await self._storage.accounts.get_account(schedule.account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {schedule.account_id}")

        if schedule.type == TransactionType.EXPENSE and account.balance < schedule.amount:
            paused = await self._claim(
                schedule,
                {"status": ScheduleStatus.PAUSED, "last_execution_date": now},
            )
            if paused is None:
                return await self._skipped(schedule, correlation_id)
            await self._audit.log_schedule_paused(paused, account.balance, correlation_id)
            return SweepItemDetail(
                scheduled_transaction_id=schedule.id,
                outcome=SweepOutcome.INSUFFICIENT_FUNDS,
                message=f"Balance {account.balance} is below {schedule.amount}",
            )

        async with self._storage.unit_of_work.atomic():
            advanced = await self._claim(schedule, advance)
            if advanced is None:
                return await self._skipped(schedule, correlation_id)
            transaction, _ = await self._gateway.create_transaction(
                schedule.user_id,
                TransactionDraft(
                    account_id=schedule.account_id,
                    category_id=schedule.category_id,
                    amount=schedule.amount,
                    type=schedule.type,
                    date=now,
                    description=schedule.description,
                    payee=schedule.payee,
                    tags=schedule.tags,
                    is_recurring=True,
                    scheduled_transaction_id=schedule.id,
                ),
                correlation_id=correlation_id,
            )

        await self._audit.log_schedule_executed(advanced, transaction, correlation_id)
        await self._audit.log_schedule_advanced(advanced, correlation_id)
        return SweepItemDetail(
            scheduled_transaction_id=schedule.id,
            outcome=SweepOutcome.AUTO_EXECUTED,
            transaction_id=transaction.id,
            next_execution_date=next_date,
        )
