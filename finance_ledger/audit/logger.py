"""
Audit Logger

Every schedule move, ledger write, budget alert and notification decision
is written here as an AuditEvent: once to the structlog stream and once to
the audit store when one is configured.

A failing audit store is logged and never fails the caller. Events of one
sweep share a correlation id.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from finance_ledger.models.budget import BudgetAlert
from finance_ledger.models.ledger import Transaction
from finance_ledger.models.schedule import ScheduledTransaction, SweepResult
from finance_ledger.services.storage import AuditStorageInterface


# JSON lines through the stdlib logging tree
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """Writes engine events to the log stream and the audit store."""

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Emit one event.

        Returns False only when the audit store rejected the write.
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_schedule_created(self, schedule: ScheduledTransaction) -> None:
        event = AuditEventBuilder.schedule_created(
            schedule_id=schedule.id,
            user_id=schedule.user_id,
            frequency=schedule.frequency.value,
            next_execution_date=schedule.next_execution_date,
        )
        await self.log(event)

    async def log_schedule_updated(
        self,
        schedule: ScheduledTransaction,
        fields: list[str],
    ) -> None:
        event = AuditEventBuilder.schedule_updated(
            schedule_id=schedule.id,
            user_id=schedule.user_id,
            fields=fields,
        )
        await self.log(event)

    async def log_schedule_advanced(
        self,
        schedule: ScheduledTransaction,
        correlation_id: UUID,
    ) -> None:
        """Log the move of a schedule to its next occurrence (or completion)."""
        event = AuditEventBuilder.schedule_advanced(
            schedule_id=schedule.id,
            user_id=schedule.user_id,
            next_execution_date=schedule.next_execution_date,
            status=schedule.status.value,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_schedule_executed(
        self,
        schedule: ScheduledTransaction,
        transaction: Transaction,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.schedule_executed(
            schedule_id=schedule.id,
            user_id=schedule.user_id,
            transaction_id=transaction.id,
            amount=str(transaction.amount),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_schedule_paused(
        self,
        schedule: ScheduledTransaction,
        balance: Decimal,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.schedule_paused(
            schedule_id=schedule.id,
            user_id=schedule.user_id,
            balance=str(balance),
            amount=str(schedule.amount),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_sweep_started(
        self,
        now: datetime,
        due_count: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.sweep_started(
            now=now,
            due_count=due_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_sweep_completed(
        self,
        result: SweepResult,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.sweep_completed(
            summary=result.model_dump(mode="json", exclude={"details"}),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_sweep_item_failed(
        self,
        schedule_id: UUID,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.sweep_item_failed(
            schedule_id=schedule_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_sweep_item_skipped(
        self,
        schedule_id: UUID,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.sweep_item_skipped(
            schedule_id=schedule_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_changed(
        self,
        event_type: AuditEventType,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a ledger entry being created, updated or deleted."""
        event = AuditEventBuilder.transaction_changed(
            event_type=event_type,
            transaction_id=transaction.id,
            user_id=transaction.user_id,
            transaction_type=transaction.type.value,
            amount=str(transaction.amount),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_budget_alert(self, user_id: str, alert: BudgetAlert) -> None:
        event = AuditEventBuilder.budget_alert_raised(
            budget_id=alert.budget_id,
            user_id=user_id,
            level=alert.level.value,
            scope=alert.scope.value,
            percentage=alert.percentage,
            message=alert.message,
        )
        await self.log(event)

    async def log_budget_recomputed(
        self,
        budget_id: UUID,
        user_id: str,
        total_spent: Decimal,
        transaction_count: int,
    ) -> None:
        event = AuditEventBuilder.budget_recomputed(
            budget_id=budget_id,
            user_id=user_id,
            total_spent=str(total_spent),
            transaction_count=transaction_count,
        )
        await self.log(event)

    async def log_notification_created(
        self,
        notification_id: UUID,
        user_id: str,
        notification_type: str,
        budget_id: Optional[UUID],
    ) -> None:
        event = AuditEventBuilder.notification_created(
            notification_id=notification_id,
            user_id=user_id,
            notification_type=notification_type,
            budget_id=budget_id,
        )
        await self.log(event)

    async def log_notification_suppressed(
        self,
        existing_id: UUID,
        user_id: str,
        notification_type: str,
        category_name: Optional[str],
    ) -> None:
        event = AuditEventBuilder.notification_suppressed(
            existing_id=existing_id,
            user_id=user_id,
            notification_type=notification_type,
            category_name=category_name,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    New correlation id, taken once per sweep and handed to every item.
    """
    return uuid4()
