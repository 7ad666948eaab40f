"""
Notification Deduper

Turns budget alerts into persisted notifications without spamming the
user. An alert is dropped while an unread notification of the same kind
already exists for the same owner and budget (and, for category alerts, the
same category name). Once the user reads it, the next alert of that kind
creates a fresh notification.
"""

from typing import Optional

import structlog

from finance_ledger.audit import AuditLogger
from finance_ledger.models.budget import AlertScope, BudgetAlert
from finance_ledger.models.notification import (
    Notification,
    NotificationData,
    NotificationSeverity,
    NotificationType,
    RelatedModel,
)
from finance_ledger.services.storage import NotificationStorageInterface


logger = structlog.get_logger(__name__)

TITLES = {
    NotificationType.CATEGORY_EXCEEDED: "Category Budget Exceeded",
    NotificationType.CATEGORY_WARNING: "Category Budget Warning",
    NotificationType.BUDGET_EXCEEDED: "Total Budget Exceeded",
    NotificationType.BUDGET_WARNING: "Total Budget Warning",
}


def classify(alert: BudgetAlert) -> NotificationType:
    """Notification type for an alert: scope x (spent >= limit)."""
    if alert.scope == AlertScope.CATEGORY:
        if alert.is_exceeded:
            return NotificationType.CATEGORY_EXCEEDED
        return NotificationType.CATEGORY_WARNING
    if alert.is_exceeded:
        return NotificationType.BUDGET_EXCEEDED
    return NotificationType.BUDGET_WARNING


class NotificationDeduper:

    def __init__(
        self,
        notifications: NotificationStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._notifications = notifications
        self._audit = audit_logger or AuditLogger()

    async def create_from_alerts(
        self,
        alerts: list[BudgetAlert],
        user_id: str,
    ) -> list[Notification]:
        """
        Persist one notification per alert unless an unread duplicate exists.

        Each alert is handled on its own: a storage failure for one is
        logged and the rest still go through.

        Returns:
            The notifications actually created
        """
        created = []
        for alert in alerts or []:
            try:
                notification = await self._create_one(alert, user_id)
            except Exception as e:
                logger.error(
                    "notification_create_failed",
                    user_id=user_id,
                    budget_id=str(alert.budget_id),
                    error=str(e),
                )
                continue
            if notification is not None:
                created.append(notification)
        return created

    async def _create_one(
        self,
        alert: BudgetAlert,
        user_id: str,
    ) -> Optional[Notification]:
        notification_type = classify(alert)
        category_name = alert.category_name if alert.scope == AlertScope.CATEGORY else None

        existing = await self._notifications.find_unread(
            user_id=user_id,
            notification_type=notification_type,
            related_id=alert.budget_id,
            category_name=category_name,
        )
        if existing is not None:
            await self._audit.log_notification_suppressed(
                existing_id=existing.id,
                user_id=user_id,
                notification_type=notification_type.value,
                category_name=category_name,
            )
            return None

        exceeded = notification_type in (
            NotificationType.CATEGORY_EXCEEDED,
            NotificationType.BUDGET_EXCEEDED,
        )
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=TITLES[notification_type],
            message=alert.message,
            related_id=alert.budget_id,
            related_model=RelatedModel.BUDGET,
            severity=NotificationSeverity.DANGER if exceeded else NotificationSeverity.WARNING,
            data=NotificationData(
                budget_name=alert.budget_name,
                limit=alert.limit,
                spent=alert.spent,
                percentage=alert.percentage,
                category_name=category_name,
            ),
        )
        await self._notifications.create_notification(notification)
        await self._audit.log_notification_created(
            notification_id=notification.id,
            user_id=user_id,
            notification_type=notification_type.value,
            budget_id=alert.budget_id,
        )
        return notification
