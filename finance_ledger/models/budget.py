"""
Budget Models

A Budget covers an inclusive period [start_date, end_date] and tracks
spending either in total only (no category entries) or per category plus
total. Category entries are value objects owned by the budget.

Spend totals are derived state: they are kept current incrementally from
transaction events and rebuilt from scratch on every progress query.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BudgetPeriodType(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class AlertScope(str, Enum):
    """Whether an alert is about one category or the budget total."""
    CATEGORY = "category"
    TOTAL = "total"


class AlertLevel(str, Enum):
    WARNING = "warning"
    EXCEEDED = "exceeded"


def spend_percentage(spent: Decimal, limit: Decimal) -> int:
    """
    Percentage of a limit consumed, rounded half-up and capped at 100.

    A zero limit always reports 0.
    """
    if limit <= 0:
        return 0
    ratio = (Decimal(spent) / Decimal(limit) * 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return max(0, min(100, int(ratio)))


# =============================================================================
# BUDGET
# =============================================================================

class BudgetCategory(BaseModel):
    """One category limit inside a budget."""

    category_id: UUID
    category_name: Optional[str] = Field(
        default=None,
        description="Snapshot of the category name at budget creation/update"
    )
    limit: Decimal = Field(..., ge=0)
    spent: Decimal = Field(default=Decimal("0"), ge=0)


class Budget(BaseModel):
    """A spending plan for one user over one period."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    period_type: BudgetPeriodType
    start_date: datetime
    end_date: datetime
    categories: list[BudgetCategory] = Field(default_factory=list)
    total_limit: Decimal = Field(default=Decimal("0"), ge=0)
    total_spent: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True
    notification_threshold: int = Field(
        default=80,
        ge=1,
        le=100,
        description="Percentage of a limit at which a warning is raised"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_period(self) -> 'Budget':
        """Period end cannot precede its start."""
        if self.end_date < self.start_date:
            raise ValueError("Budget end date cannot be before start date")
        return self

    def covers(self, moment: datetime) -> bool:
        """Inclusive on both ends."""
        return self.start_date <= moment <= self.end_date

    def find_category(self, category_id: Optional[UUID]) -> Optional[BudgetCategory]:
        if category_id is None:
            return None
        for entry in self.categories:
            if entry.category_id == category_id:
                return entry
        return None

    def tracks(self, category_id: Optional[UUID]) -> bool:
        """
        Whether spend in `category_id` counts toward this budget.

        Total-only budgets track everything; category budgets only track
        their own categories.
        """
        if not self.categories:
            return True
        return self.find_category(category_id) is not None


class BudgetCategoryDraft(BaseModel):
    category_id: UUID
    limit: Decimal = Field(..., ge=0)


class BudgetDraft(BaseModel):
    """
    User-supplied fields for a new budget.

    Three shapes are accepted:
    - `category_id` + `amount`: single-category budget
    - `categories`: multi-category budget, total is the sum of limits
    - neither: total-only budget using `total_limit`
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    period_type: BudgetPeriodType
    start_date: datetime
    end_date: datetime
    categories: list[BudgetCategoryDraft] = Field(default_factory=list)
    category_id: Optional[UUID] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)
    total_limit: Decimal = Field(default=Decimal("0"), ge=0)
    notification_threshold: Optional[int] = Field(default=None, ge=1, le=100)


class BudgetUpdate(BaseModel):
    """Partial update of a budget; only explicitly set fields apply."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    period_type: Optional[BudgetPeriodType] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    categories: Optional[list[BudgetCategoryDraft]] = None
    total_limit: Optional[Decimal] = Field(default=None, ge=0)
    notification_threshold: Optional[int] = Field(default=None, ge=1, le=100)
    is_active: Optional[bool] = None


# =============================================================================
# ALERTS AND PROGRESS
# =============================================================================

class BudgetAlert(BaseModel):
    """
    In-memory signal that a budget or category crossed a threshold.

    Carries everything needed to build a notification.
    """

    budget_id: UUID
    budget_name: str
    scope: AlertScope
    level: AlertLevel
    category_id: Optional[UUID] = None
    category_name: Optional[str] = None
    limit: Decimal
    spent: Decimal
    percentage: int
    message: str

    @property
    def is_exceeded(self) -> bool:
        return self.spent >= self.limit


class CategoryProgress(BaseModel):
    category_id: UUID
    category_name: Optional[str] = None
    limit: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: int


class TotalProgress(BaseModel):
    limit: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: int


class BudgetProgress(BaseModel):
    """Result of a full recomputation."""

    budget: Budget
    category_progress: list[CategoryProgress] = Field(default_factory=list)
    total_progress: TotalProgress
    alerts: list[BudgetAlert] = Field(default_factory=list)
