"""
Notification Inbox

Owner-scoped read/delete bookkeeping for notifications. Every call takes
the effective user id; a notification owned by someone else behaves as if
it did not exist.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from finance_ledger.models.notification import Notification, NotificationType
from finance_ledger.services.storage import NotFoundError, NotificationStorageInterface


class NotificationInbox:

    def __init__(self, notifications: NotificationStorageInterface):
        self._notifications = notifications

    async def list(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> list[Notification]:
        """Newest first."""
        return await self._notifications.list_notifications(
            user_id,
            is_read=is_read,
            notification_type=notification_type,
        )

    async def unread_count(self, user_id: str) -> int:
        unread = await self._notifications.list_notifications(user_id, is_read=False)
        return len(unread)

    async def mark_as_read(
        self,
        notification_id: UUID,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> Notification:
        """
        Raises:
            NotFoundError: If the notification doesn't exist for this user
        """
        notification = await self._notifications.mark_read(
            notification_id,
            user_id,
            now or datetime.utcnow(),
        )
        if notification is None:
            raise NotFoundError(f"Notification not found: {notification_id}")
        return notification

    async def mark_all_as_read(
        self,
        user_id: str,
        notification_type: Optional[NotificationType] = None,
        now: Optional[datetime] = None,
    ) -> int:
        return await self._notifications.mark_all_read(
            user_id,
            now or datetime.utcnow(),
            notification_type=notification_type,
        )

    async def delete(self, notification_id: UUID, user_id: str) -> None:
        """
        Raises:
            NotFoundError: If the notification doesn't exist for this user
        """
        if not await self._notifications.delete_notification(notification_id, user_id):
            raise NotFoundError(f"Notification not found: {notification_id}")

    async def delete_all(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> int:
        return await self._notifications.delete_notifications(
            user_id,
            is_read=is_read,
            notification_type=notification_type,
        )
