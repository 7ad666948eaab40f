"""
Audit Models for the Finance Ledger

Every state change made by the recurrence-and-budget engine is recorded as
an AuditEvent: schedule lifecycle moves, materialized transactions, budget
alerts and notification decisions. One sweep shares one correlation id so
its per-item events can be traced together.

Audit logs are append-only.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Schedule lifecycle
    SCHEDULE_CREATED = "schedule_created"
    SCHEDULE_UPDATED = "schedule_updated"
    SCHEDULE_ADVANCED = "schedule_advanced"
    SCHEDULE_EXECUTED = "schedule_executed"
    SCHEDULE_PAUSED = "schedule_paused"
    SCHEDULE_COMPLETED = "schedule_completed"

    # Sweep
    SWEEP_STARTED = "sweep_started"
    SWEEP_COMPLETED = "sweep_completed"
    SWEEP_ITEM_FAILED = "sweep_item_failed"
    SWEEP_ITEM_SKIPPED = "sweep_item_skipped"

    # Ledger
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Budgets and notifications
    BUDGET_ALERT_RAISED = "budget_alert_raised"
    BUDGET_RECOMPUTED = "budget_recomputed"
    NOTIFICATION_CREATED = "notification_created"
    NOTIFICATION_SUPPRESSED = "notification_suppressed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """One entry of the append-only audit trail."""

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Subject
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'schedule', 'transaction', 'budget')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the entity"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all items of one sweep)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Set on failure events
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Flat keyword arguments for the structlog call."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "user_id": self.user_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Flatten into one audit worksheet row.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         user_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            self.user_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Factory methods for the engine's audit events.

    Usage:
        event = AuditEventBuilder.sweep_started(now, len(due), correlation_id)
        event = AuditEventBuilder.sweep_completed(summary, correlation_id)
    """

    @staticmethod
    def schedule_created(
        schedule_id: UUID,
        user_id: str,
        frequency: str,
        next_execution_date: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_CREATED,
            entity_type="schedule",
            entity_id=schedule_id,
            user_id=user_id,
            description=f"Schedule created ({frequency})",
            details={
                "frequency": frequency,
                "next_execution_date": next_execution_date.isoformat(),
            },
        )

    @staticmethod
    def schedule_updated(
        schedule_id: UUID,
        user_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_UPDATED,
            entity_type="schedule",
            entity_id=schedule_id,
            user_id=user_id,
            description=f"Schedule updated: {', '.join(sorted(fields))}",
            details={"fields": sorted(fields)},
        )

    @staticmethod
    def schedule_advanced(
        schedule_id: UUID,
        user_id: str,
        next_execution_date: datetime,
        status: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.SCHEDULE_COMPLETED
                if status == "completed"
                else AuditEventType.SCHEDULE_ADVANCED
            ),
            entity_type="schedule",
            entity_id=schedule_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Schedule advanced to {next_execution_date.isoformat()} ({status})",
            details={
                "next_execution_date": next_execution_date.isoformat(),
                "status": status,
            },
        )

    @staticmethod
    def schedule_executed(
        schedule_id: UUID,
        user_id: str,
        transaction_id: UUID,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_EXECUTED,
            entity_type="schedule",
            entity_id=schedule_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Schedule executed: transaction {transaction_id} for {amount}",
            details={
                "transaction_id": str(transaction_id),
                "amount": amount,
            },
        )

    @staticmethod
    def schedule_paused(
        schedule_id: UUID,
        user_id: str,
        balance: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_PAUSED,
            severity=AuditSeverity.WARNING,
            entity_type="schedule",
            entity_id=schedule_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Schedule paused: insufficient funds",
            details={
                "balance": balance,
                "amount": amount,
            },
        )

    @staticmethod
    def sweep_started(now: datetime, due_count: int, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_STARTED,
            entity_type="sweep",
            correlation_id=correlation_id,
            description=f"Sweep started with {due_count} due schedules",
            details={"now": now.isoformat(), "due_count": due_count},
        )

    @staticmethod
    def sweep_completed(summary: dict, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_COMPLETED,
            severity=AuditSeverity.WARNING if summary.get("errors") else AuditSeverity.INFO,
            entity_type="sweep",
            correlation_id=correlation_id,
            description=(
                f"Sweep completed: {summary.get('processed', 0)} processed, "
                f"{summary.get('errors', 0)} errors"
            ),
            details=summary,
        )

    @staticmethod
    def sweep_item_failed(
        schedule_id: UUID,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_ITEM_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="schedule",
            entity_id=schedule_id,
            correlation_id=correlation_id,
            description="Scheduled transaction could not be processed",
            error_message=error_message,
        )

    @staticmethod
    def sweep_item_skipped(schedule_id: UUID, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_ITEM_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="schedule",
            entity_id=schedule_id,
            correlation_id=correlation_id,
            description="Scheduled transaction already claimed by another sweep",
        )

    @staticmethod
    def transaction_changed(
        event_type: AuditEventType,
        transaction_id: UUID,
        user_id: str,
        transaction_type: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_")[-1]
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction {verb}: {transaction_type} {amount}",
            details={
                "type": transaction_type,
                "amount": amount,
            },
        )

    @staticmethod
    def budget_alert_raised(
        budget_id: UUID,
        user_id: str,
        level: str,
        scope: str,
        percentage: int,
        message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_ALERT_RAISED,
            severity=AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            user_id=user_id,
            description=message[:500],
            details={
                "level": level,
                "scope": scope,
                "percentage": percentage,
            },
        )

    @staticmethod
    def budget_recomputed(
        budget_id: UUID,
        user_id: str,
        total_spent: str,
        transaction_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_RECOMPUTED,
            entity_type="budget",
            entity_id=budget_id,
            user_id=user_id,
            description=f"Budget recomputed from {transaction_count} transactions",
            details={
                "total_spent": total_spent,
                "transaction_count": transaction_count,
            },
        )

    @staticmethod
    def notification_created(
        notification_id: UUID,
        user_id: str,
        notification_type: str,
        budget_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_CREATED,
            entity_type="notification",
            entity_id=notification_id,
            user_id=user_id,
            description=f"Notification created: {notification_type}",
            details={
                "type": notification_type,
                "budget_id": str(budget_id) if budget_id else None,
            },
        )

    @staticmethod
    def notification_suppressed(
        existing_id: UUID,
        user_id: str,
        notification_type: str,
        category_name: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_SUPPRESSED,
            severity=AuditSeverity.DEBUG,
            entity_type="notification",
            entity_id=existing_id,
            user_id=user_id,
            description=f"Duplicate {notification_type} notification skipped",
            details={
                "type": notification_type,
                "category_name": category_name,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
