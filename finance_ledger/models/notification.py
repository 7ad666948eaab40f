"""
Notification Models

Notifications are created only by the budget alerting path. Reading and
deleting them is plain inbox bookkeeping.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    BUDGET_WARNING = "budget_warning"
    BUDGET_EXCEEDED = "budget_exceeded"
    CATEGORY_WARNING = "category_warning"
    CATEGORY_EXCEEDED = "category_exceeded"
    SYSTEM = "system"


# Types whose de-duplication key includes the category name
CATEGORY_NOTIFICATION_TYPES = frozenset({
    NotificationType.CATEGORY_WARNING,
    NotificationType.CATEGORY_EXCEEDED,
})


class NotificationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"


class RelatedModel(str, Enum):
    """Kind of entity a notification points at."""
    BUDGET = "budget"
    TRANSACTION = "transaction"
    ACCOUNT = "account"
    CATEGORY = "category"


class NotificationData(BaseModel):
    """Structured payload attached to budget notifications."""

    budget_name: Optional[str] = None
    limit: Optional[Decimal] = None
    spent: Optional[Decimal] = None
    percentage: Optional[int] = None
    category_name: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)


class Notification(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    related_id: Optional[UUID] = None
    related_model: Optional[RelatedModel] = None
    data: NotificationData = Field(default_factory=NotificationData)
    is_read: bool = False
    read_at: Optional[datetime] = None
    severity: NotificationSeverity = NotificationSeverity.INFO
    created_at: datetime = Field(default_factory=datetime.utcnow)
