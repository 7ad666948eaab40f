"""Budget notification package."""

from finance_ledger.notifications.deduper import NotificationDeduper, classify
from finance_ledger.notifications.inbox import NotificationInbox

__all__ = ["NotificationDeduper", "NotificationInbox", "classify"]
