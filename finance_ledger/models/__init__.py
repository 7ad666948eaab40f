"""
Data Models Package

This package contains all Pydantic models used by the finance ledger.
All data flowing through the engine must conform to these schemas.
"""

from finance_ledger.models.ledger import (
    Account,
    AccountType,
    Category,
    CategoryType,
    Transaction,
    TransactionDraft,
    TransactionType,
    TransactionUpdate,
    balance_delta,
)
from finance_ledger.models.schedule import (
    Frequency,
    ScheduleDraft,
    ScheduleStatus,
    ScheduleUpdate,
    ScheduledTransaction,
    SweepItemDetail,
    SweepOutcome,
    SweepResult,
    UpcomingSchedules,
)
from finance_ledger.models.budget import (
    AlertLevel,
    AlertScope,
    Budget,
    BudgetAlert,
    BudgetCategory,
    BudgetCategoryDraft,
    BudgetDraft,
    BudgetPeriodType,
    BudgetProgress,
    BudgetUpdate,
    CategoryProgress,
    TotalProgress,
    spend_percentage,
)
from finance_ledger.models.notification import (
    CATEGORY_NOTIFICATION_TYPES,
    Notification,
    NotificationData,
    NotificationSeverity,
    NotificationType,
    RelatedModel,
)
from finance_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountType",
    "Category",
    "CategoryType",
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    "TransactionUpdate",
    "balance_delta",
    # Schedule models
    "Frequency",
    "ScheduleDraft",
    "ScheduleStatus",
    "ScheduleUpdate",
    "ScheduledTransaction",
    "SweepItemDetail",
    "SweepOutcome",
    "SweepResult",
    "UpcomingSchedules",
    # Budget models
    "AlertLevel",
    "AlertScope",
    "Budget",
    "BudgetAlert",
    "BudgetCategory",
    "BudgetCategoryDraft",
    "BudgetDraft",
    "BudgetPeriodType",
    "BudgetProgress",
    "BudgetUpdate",
    "CategoryProgress",
    "TotalProgress",
    "spend_percentage",
    # Notification models
    "CATEGORY_NOTIFICATION_TYPES",
    "Notification",
    "NotificationData",
    "NotificationSeverity",
    "NotificationType",
    "RelatedModel",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
