"""
Abstract Storage Interface

The engine talks to persistence only through these interfaces, so that:
1. Google Sheets can be swapped for a real database later
2. In-memory storage can be used for tests
3. Business logic stays decoupled from the storage implementation

The interface is intentionally narrow: only the operations the
recurrence-and-budget engine and its thin management layer need.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from finance_ledger.models.audit import AuditEvent
from finance_ledger.models.budget import Budget, BudgetPeriodType
from finance_ledger.models.ledger import Account, Category, Transaction, TransactionType
from finance_ledger.models.notification import Notification, NotificationType
from finance_ledger.models.schedule import Frequency, ScheduledTransaction, ScheduleStatus


class UnitOfWork(ABC):
    """
    Transactional boundary shared by all entity stores of one backend.

    Everything written inside `async with uow.atomic():` is kept only if the
    block exits normally. Scopes nest: only the outermost one commits or
    rolls back. Backends that cannot roll back document that they are
    best-effort.
    """

    @abstractmethod
    def atomic(self) -> AbstractAsyncContextManager[None]:
        pass


class AccountStorageInterface(ABC):
    """Account persistence and balance mutation."""

    @abstractmethod
    async def save_account(self, account: Account) -> bool:
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    async def increment_balance(self, account_id: UUID, delta: Decimal) -> Account:
        """
        Add `delta` (may be negative) to the account balance.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass


class CategoryStorageInterface(ABC):
    """Category directory (plain CRUD lives outside the engine)."""

    @abstractmethod
    async def save_category(self, category: Category) -> bool:
        pass

    @abstractmethod
    async def get_categories(
        self,
        category_ids: list[UUID],
        user_id: str,
    ) -> list[Category]:
        """Return the subset of `category_ids` owned by `user_id`."""
        pass


class TransactionStorageInterface(ABC):
    """Ledger entry persistence."""

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> bool:
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> bool:
        """
        Replace a stored transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        account_id: Optional[UUID] = None,
        scheduled_transaction_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        List a user's transactions, oldest first.

        Date bounds are inclusive on both ends.
        """
        pass


class ScheduledTransactionStorageInterface(ABC):
    """Recurring transaction template persistence."""

    @abstractmethod
    async def save_schedule(self, schedule: ScheduledTransaction) -> bool:
        pass

    @abstractmethod
    async def get_schedule(self, schedule_id: UUID) -> Optional[ScheduledTransaction]:
        pass

    @abstractmethod
    async def update_schedule(
        self,
        schedule_id: UUID,
        patch: dict[str, Any],
    ) -> ScheduledTransaction:
        """
        Apply a field patch unconditionally.

        Raises:
            NotFoundError: If the schedule doesn't exist
        """
        pass

    @abstractmethod
    async def claim_schedule(
        self,
        schedule_id: UUID,
        expected_status: ScheduleStatus,
        expected_next_execution_date: datetime,
        patch: dict[str, Any],
    ) -> Optional[ScheduledTransaction]:
        """
        Apply `patch` only if the stored status and next execution date still
        match the expected values (compare-and-swap).

        Returns:
            The updated schedule, or None if another writer got there first
        """
        pass

    @abstractmethod
    async def delete_schedule(self, schedule_id: UUID) -> bool:
        pass

    @abstractmethod
    async def find_due(self, now: datetime) -> list[ScheduledTransaction]:
        """Active schedules with next_execution_date <= now, earliest first."""
        pass

    @abstractmethod
    async def list_schedules(
        self,
        user_id: str,
        status: Optional[ScheduleStatus] = None,
        account_id: Optional[UUID] = None,
        frequency: Optional[Frequency] = None,
    ) -> list[ScheduledTransaction]:
        """List a user's schedules ordered by next execution date."""
        pass


class BudgetStorageInterface(ABC):
    """Budget persistence."""

    @abstractmethod
    async def save_budget(self, budget: Budget) -> bool:
        pass

    @abstractmethod
    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def update_budget(self, budget: Budget) -> bool:
        """
        Replace a stored budget.

        Raises:
            NotFoundError: If the budget doesn't exist
        """
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def find_active_for_owner_in_period(
        self,
        user_id: str,
        moment: datetime,
        category_id: Optional[UUID] = None,
    ) -> list[Budget]:
        """
        Active budgets of `user_id` whose period contains `moment` and that
        track `category_id` (total-only budgets track every category; an
        uncategorized moment only matches total-only budgets).
        """
        pass

    @abstractmethod
    async def list_budgets(
        self,
        user_id: str,
        is_active: Optional[bool] = None,
        on_date: Optional[datetime] = None,
        period_type: Optional[BudgetPeriodType] = None,
    ) -> list[Budget]:
        """List a user's budgets, newest first."""
        pass


class NotificationStorageInterface(ABC):
    """Notification persistence."""

    @abstractmethod
    async def create_notification(self, notification: Notification) -> bool:
        pass

    @abstractmethod
    async def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        pass

    @abstractmethod
    async def find_unread(
        self,
        user_id: str,
        notification_type: NotificationType,
        related_id: Optional[UUID],
        category_name: Optional[str] = None,
    ) -> Optional[Notification]:
        """
        Find an unread notification of the same kind.

        For category-scoped types `category_name` must match exactly, a
        missing name included.
        """
        pass

    @abstractmethod
    async def list_notifications(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> list[Notification]:
        """List a user's notifications, newest first."""
        pass

    @abstractmethod
    async def mark_read(
        self,
        notification_id: UUID,
        user_id: str,
        read_at: datetime,
    ) -> Optional[Notification]:
        pass

    @abstractmethod
    async def mark_all_read(
        self,
        user_id: str,
        read_at: datetime,
        notification_type: Optional[NotificationType] = None,
    ) -> int:
        pass

    @abstractmethod
    async def delete_notification(self, notification_id: UUID, user_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_notifications(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> int:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID (e.g., one sweep), oldest first."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


@dataclass
class StorageBundle:
    """All entity stores of one backend plus its transactional boundary."""

    unit_of_work: UnitOfWork
    accounts: AccountStorageInterface
    categories: CategoryStorageInterface
    transactions: TransactionStorageInterface
    schedules: ScheduledTransactionStorageInterface
    budgets: BudgetStorageInterface
    notifications: NotificationStorageInterface
    audit: Optional[AuditStorageInterface] = None
