"""
In-Memory Storage Implementation

Process-local implementation of every storage interface. It backs the test
suite and the default runtime configuration.

Stored models are copied on the way in and on the way out and are never
mutated in place, so a shallow copy of each table is a complete snapshot.
`atomic()` takes such a snapshot for the outermost scope of the current
task and restores it if the block raises. The audit log is append-only and
is not rolled back.

`claim_schedule` contains no await point, so on a single event loop the
compare-and-swap cannot interleave with another writer.
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from finance_ledger.models.audit import AuditEvent
from finance_ledger.models.budget import Budget, BudgetPeriodType
from finance_ledger.models.ledger import Account, Category, Transaction, TransactionType
from finance_ledger.models.notification import (
    CATEGORY_NOTIFICATION_TYPES,
    Notification,
    NotificationType,
)
from finance_ledger.models.schedule import Frequency, ScheduledTransaction, ScheduleStatus
from finance_ledger.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    BudgetStorageInterface,
    CategoryStorageInterface,
    NotificationStorageInterface,
    NotFoundError,
    ScheduledTransactionStorageInterface,
    StorageBundle,
    TransactionStorageInterface,
    UnitOfWork,
)


_TABLES = (
    "accounts",
    "categories",
    "transactions",
    "schedules",
    "budgets",
    "notifications",
)

# Depth of nested atomic() scopes in the current task
_atomic_depth: ContextVar[int] = ContextVar("_atomic_depth", default=0)


class InMemoryDatabase(UnitOfWork):
    """Holds every table of the in-memory backend."""

    def __init__(self):
        self.accounts: dict[UUID, Account] = {}
        self.categories: dict[UUID, Category] = {}
        self.transactions: dict[UUID, Transaction] = {}
        self.schedules: dict[UUID, ScheduledTransaction] = {}
        self.budgets: dict[UUID, Budget] = {}
        self.notifications: dict[UUID, Notification] = {}
        self.audit_events: list[AuditEvent] = []

    def _snapshot(self) -> dict[str, dict]:
        return {name: dict(getattr(self, name)) for name in _TABLES}

    def _restore(self, snapshot: dict[str, dict]) -> None:
        for name, rows in snapshot.items():
            table = getattr(self, name)
            table.clear()
            table.update(rows)

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        depth = _atomic_depth.get()
        token = _atomic_depth.set(depth + 1)
        snapshot = self._snapshot() if depth == 0 else None
        try:
            yield
        except BaseException:
            if snapshot is not None:
                self._restore(snapshot)
            raise
        finally:
            _atomic_depth.reset(token)


def _copy(model):
    return model.model_copy(deep=True)


class InMemoryAccountStorage(AccountStorageInterface):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def save_account(self, account: Account) -> bool:
        self._db.accounts[account.id] = _copy(account)
        return True

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        account = self._db.accounts.get(account_id)
        return _copy(account) if account else None

    async def increment_balance(self, account_id: UUID, delta: Decimal) -> Account:
        account = self._db.accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        updated = account.model_copy(
            update={
                "balance": account.balance + delta,
                "updated_at": datetime.utcnow(),
            }
        )
        self._db.accounts[account_id] = updated
        return _copy(updated)


class InMemoryCategoryStorage(CategoryStorageInterface):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def save_category(self, category: Category) -> bool:
        self._db.categories[category.id] = _copy(category)
        return True

    async def get_categories(
        self,
        category_ids: list[UUID],
        user_id: str,
    ) -> list[Category]:
        found = []
        for category_id in dict.fromkeys(category_ids):
            category = self._db.categories.get(category_id)
            if category and category.user_id == user_id:
                found.append(_copy(category))
        return found


class InMemoryTransactionStorage(TransactionStorageInterface):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def save_transaction(self, transaction: Transaction) -> bool:
        self._db.transactions[transaction.id] = _copy(transaction)
        return True

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        transaction = self._db.transactions.get(transaction_id)
        return _copy(transaction) if transaction else None

    async def update_transaction(self, transaction: Transaction) -> bool:
        if transaction.id not in self._db.transactions:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        self._db.transactions[transaction.id] = _copy(transaction)
        return True

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        return self._db.transactions.pop(transaction_id, None) is not None

    async def list_transactions(
        self,
        user_id: str,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        account_id: Optional[UUID] = None,
        scheduled_transaction_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        results = []
        for transaction in self._db.transactions.values():
            if transaction.user_id != user_id:
                continue
            if transaction_type and transaction.type != transaction_type:
                continue
            if date_from and transaction.date < date_from:
                continue
            if date_to and transaction.date > date_to:
                continue
            if account_id and transaction.account_id != account_id:
                continue
            if (
                scheduled_transaction_id
                and transaction.scheduled_transaction_id != scheduled_transaction_id
            ):
                continue
            results.append(_copy(transaction))

        results.sort(key=lambda t: t.date)
        return results


class InMemoryScheduledTransactionStorage(ScheduledTransactionStorageInterface):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def save_schedule(self, schedule: ScheduledTransaction) -> bool:
        self._db.schedules[schedule.id] = _copy(schedule)
        return True

    async def get_schedule(self, schedule_id: UUID) -> Optional[ScheduledTransaction]:
        schedule = self._db.schedules.get(schedule_id)
        return _copy(schedule) if schedule else None

    def _apply(self, schedule: ScheduledTransaction, patch: dict[str, Any]) -> ScheduledTransaction:
        updated = schedule.model_copy(update={**patch, "updated_at": datetime.utcnow()})
        self._db.schedules[schedule.id] = updated
        return _copy(updated)

    async def update_schedule(
        self,
        schedule_id: UUID,
        patch: dict[str, Any],
    ) -> ScheduledTransaction:
        schedule = self._db.schedules.get(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Scheduled transaction not found: {schedule_id}")
        return self._apply(schedule, patch)

    async def claim_schedule(
        self,
        schedule_id: UUID,
        expected_status: ScheduleStatus,
        expected_next_execution_date: datetime,
        patch: dict[str, Any],
    ) -> Optional[ScheduledTransaction]:
        schedule = self._db.schedules.get(schedule_id)
        if schedule is None:
            return None
        if (
            schedule.status != expected_status
            or schedule.next_execution_date != expected_next_execution_date
        ):
            return None
        return self._apply(schedule, patch)

    async def delete_schedule(self, schedule_id: UUID) -> bool:
        return self._db.schedules.pop(schedule_id, None) is not None

    async def find_due(self, now: datetime) -> list[ScheduledTransaction]:
        due = [
            _copy(schedule)
            for schedule in self._db.schedules.values()
            if schedule.is_due(now)
        ]
        due.sort(key=lambda s: s.next_execution_date)
        return due

    async def list_schedules(
        self,
        user_id: str,
        status: Optional[ScheduleStatus] = None,
        account_id: Optional[UUID] = None,
        frequency: Optional[Frequency] = None,
    ) -> list[ScheduledTransaction]:
        results = []
        for schedule in self._db.schedules.values():
            if schedule.user_id != user_id:
                continue
            if status and schedule.status != status:
                continue
            if account_id and schedule.account_id != account_id:
                continue
            if frequency and schedule.frequency != frequency:
                continue
            results.append(_copy(schedule))

        results.sort(key=lambda s: s.next_execution_date)
        return results


class InMemoryBudgetStorage(BudgetStorageInterface):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def save_budget(self, budget: Budget) -> bool:
        self._db.budgets[budget.id] = _copy(budget)
        return True

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        budget = self._db.budgets.get(budget_id)
        return _copy(budget) if budget else None

    async def update_budget(self, budget: Budget) -> bool:
        if budget.id not in self._db.budgets:
            raise NotFoundError(f"Budget not found: {budget.id}")
        budget.updated_at = datetime.utcnow()
        self._db.budgets[budget.id] = _copy(budget)
        return True

    async def delete_budget(self, budget_id: UUID) -> bool:
        return self._db.budgets.pop(budget_id, None) is not None

    async def find_active_for_owner_in_period(
        self,
        user_id: str,
        moment: datetime,
        category_id: Optional[UUID] = None,
    ) -> list[Budget]:
        return [
            _copy(budget)
            for budget in self._db.budgets.values()
            if budget.user_id == user_id
            and budget.is_active
            and budget.covers(moment)
            and budget.tracks(category_id)
        ]

    async def list_budgets(
        self,
        user_id: str,
        is_active: Optional[bool] = None,
        on_date: Optional[datetime] = None,
        period_type: Optional[BudgetPeriodType] = None,
    ) -> list[Budget]:
        results = []
        for budget in self._db.budgets.values():
            if budget.user_id != user_id:
                continue
            if is_active is not None and budget.is_active != is_active:
                continue
            if on_date and not budget.covers(on_date):
                continue
            if period_type and budget.period_type != period_type:
                continue
            results.append(_copy(budget))

        results.sort(key=lambda b: b.created_at, reverse=True)
        return results


class InMemoryNotificationStorage(NotificationStorageInterface):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def create_notification(self, notification: Notification) -> bool:
        self._db.notifications[notification.id] = _copy(notification)
        return True

    async def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        notification = self._db.notifications.get(notification_id)
        return _copy(notification) if notification else None

    async def find_unread(
        self,
        user_id: str,
        notification_type: NotificationType,
        related_id: Optional[UUID],
        category_name: Optional[str] = None,
    ) -> Optional[Notification]:
        for notification in self._db.notifications.values():
            if (
                notification.user_id == user_id
                and notification.type == notification_type
                and notification.related_id == related_id
                and not notification.is_read
                and (
                    notification_type not in CATEGORY_NOTIFICATION_TYPES
                    or notification.data.category_name == category_name
                )
            ):
                return _copy(notification)
        return None

    def _matching(
        self,
        user_id: str,
        is_read: Optional[bool],
        notification_type: Optional[NotificationType],
    ) -> list[Notification]:
        return [
            n for n in self._db.notifications.values()
            if n.user_id == user_id
            and (is_read is None or n.is_read == is_read)
            and (notification_type is None or n.type == notification_type)
        ]

    async def list_notifications(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> list[Notification]:
        results = [_copy(n) for n in self._matching(user_id, is_read, notification_type)]
        results.sort(key=lambda n: n.created_at, reverse=True)
        return results

    async def mark_read(
        self,
        notification_id: UUID,
        user_id: str,
        read_at: datetime,
    ) -> Optional[Notification]:
        notification = self._db.notifications.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return None
        updated = notification.model_copy(update={"is_read": True, "read_at": read_at})
        self._db.notifications[notification_id] = updated
        return _copy(updated)

    async def mark_all_read(
        self,
        user_id: str,
        read_at: datetime,
        notification_type: Optional[NotificationType] = None,
    ) -> int:
        unread = self._matching(user_id, False, notification_type)
        for notification in unread:
            self._db.notifications[notification.id] = notification.model_copy(
                update={"is_read": True, "read_at": read_at}
            )
        return len(unread)

    async def delete_notification(self, notification_id: UUID, user_id: str) -> bool:
        notification = self._db.notifications.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return False
        del self._db.notifications[notification_id]
        return True

    async def delete_notifications(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> int:
        doomed = self._matching(user_id, is_read, notification_type)
        for notification in doomed:
            del self._db.notifications[notification.id]
        return len(doomed)


class InMemoryAuditStorage(AuditStorageInterface):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def append_event(self, event: AuditEvent) -> bool:
        self._db.audit_events.append(_copy(event))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._db.audit_events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._db.audit_events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._db.audit_events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]


def create_in_memory_storage(db: Optional[InMemoryDatabase] = None) -> StorageBundle:
    """Build a StorageBundle over one shared in-memory database."""
    db = db or InMemoryDatabase()
    return StorageBundle(
        unit_of_work=db,
        accounts=InMemoryAccountStorage(db),
        categories=InMemoryCategoryStorage(db),
        transactions=InMemoryTransactionStorage(db),
        schedules=InMemoryScheduledTransactionStorage(db),
        budgets=InMemoryBudgetStorage(db),
        notifications=InMemoryNotificationStorage(db),
        audit=InMemoryAuditStorage(db),
    )
