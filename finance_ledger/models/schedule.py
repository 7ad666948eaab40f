"""
Scheduled Transaction Models

A ScheduledTransaction is a template that generates ledger transactions on
a recurring basis. Its lifecycle:

    active ──(sweep, advanced past end_date)──▶ completed
    active ──(sweep, expense cannot be funded)──▶ paused
    paused ──(manual update)──▶ active
    any non-terminal ──(manual update)──▶ cancelled

The sweep never moves a schedule to cancelled and never resumes a paused
one.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from finance_ledger.models.ledger import TransactionType


class Frequency(str, Enum):
    """Fixed set of recurrence frequencies."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class ScheduleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# =============================================================================
# SCHEDULE
# =============================================================================

class ScheduledTransaction(BaseModel):
    """A recurring transaction template."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    account_id: UUID
    category_id: Optional[UUID] = None
    base_transaction_id: Optional[UUID] = Field(
        default=None,
        description="Original transaction this schedule was derived from"
    )

    amount: Decimal = Field(..., gt=0)
    type: TransactionType
    description: Optional[str] = Field(default=None, max_length=500)
    payee: Optional[str] = Field(default=None, max_length=200)
    tags: list[str] = Field(default_factory=list)

    frequency: Frequency = Frequency.MONTHLY
    start_date: datetime
    end_date: Optional[datetime] = None
    next_execution_date: datetime
    day_of_month: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        description="Anchor day for monthly/quarterly/yearly schedules"
    )
    day_of_week: Optional[int] = Field(
        default=None,
        ge=0,
        le=6,
        description="Anchor weekday for weekly schedules (0 = Sunday)"
    )

    auto_execute: bool = Field(
        default=False,
        description="Create the ledger transaction automatically when due"
    )
    last_execution_date: Optional[datetime] = None
    status: ScheduleStatus = ScheduleStatus.ACTIVE

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_dates(self) -> 'ScheduledTransaction':
        """End date cannot precede the start date."""
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self

    def is_due(self, now: datetime) -> bool:
        return (
            self.status == ScheduleStatus.ACTIVE
            and self.next_execution_date <= now
        )

    def status_after(self, next_execution_date: datetime) -> ScheduleStatus:
        """Status the schedule takes once advanced to `next_execution_date`."""
        if self.end_date and next_execution_date > self.end_date:
            return ScheduleStatus.COMPLETED
        return ScheduleStatus.ACTIVE


class ScheduleDraft(BaseModel):
    """User-supplied fields for a new schedule."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: UUID
    category_id: Optional[UUID] = None
    base_transaction_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    type: TransactionType
    description: Optional[str] = Field(default=None, max_length=500)
    payee: Optional[str] = Field(default=None, max_length=200)
    tags: list[str] = Field(default_factory=list)
    frequency: Frequency = Frequency.MONTHLY
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    auto_execute: bool = False


class ScheduleUpdate(BaseModel):
    """Partial update of a schedule; only explicitly set fields apply."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    description: Optional[str] = Field(default=None, max_length=500)
    payee: Optional[str] = Field(default=None, max_length=200)
    tags: Optional[list[str]] = None
    frequency: Optional[Frequency] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    auto_execute: Optional[bool] = None
    status: Optional[ScheduleStatus] = None

    def changes_recurrence(self) -> bool:
        """Whether the update requires recomputing the next execution date."""
        return bool(
            self.model_fields_set
            & {"frequency", "day_of_month", "day_of_week", "start_date"}
        )


class UpcomingSchedules(BaseModel):
    """Dashboard view: schedules due soon and schedules stuck on funds."""

    upcoming: list[ScheduledTransaction] = Field(default_factory=list)
    insufficient_funds: list[ScheduledTransaction] = Field(default_factory=list)


# =============================================================================
# SWEEP RESULTS
# =============================================================================

class SweepOutcome(str, Enum):
    """What happened to one due schedule during a sweep."""
    AUTO_EXECUTED = "auto-executed"
    PENDING_APPROVAL = "pending-approval"
    INSUFFICIENT_FUNDS = "insufficient-funds"
    SKIPPED = "skipped"  # another sweep claimed the item first
    ERROR = "error"


class SweepItemDetail(BaseModel):
    """Per-item record of a sweep."""

    scheduled_transaction_id: UUID
    outcome: SweepOutcome
    transaction_id: Optional[UUID] = None
    next_execution_date: Optional[datetime] = None
    message: Optional[str] = None


class SweepResult(BaseModel):
    """
    Summary of one sweep invocation.

    `processed` counts items that advanced: auto-executed or pending
    approval. Paused (insufficient funds) and skipped items have their own
    counters and are not included.
    """

    swept_at: datetime
    processed: int = 0
    auto_executed: int = 0
    pending_approval: int = 0
    insufficient_funds: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[SweepItemDetail] = Field(default_factory=list)

    def record(self, detail: SweepItemDetail) -> None:
        """Append a per-item detail and bump the matching counter."""
        self.details.append(detail)
        if detail.outcome == SweepOutcome.AUTO_EXECUTED:
            self.auto_executed += 1
            self.processed += 1
        elif detail.outcome == SweepOutcome.PENDING_APPROVAL:
            self.pending_approval += 1
            self.processed += 1
        elif detail.outcome == SweepOutcome.INSUFFICIENT_FUNDS:
            self.insufficient_funds += 1
        elif detail.outcome == SweepOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1

    @property
    def total_due(self) -> int:
        return len(self.details)
