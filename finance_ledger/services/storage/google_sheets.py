"""
Spreadsheet Storage Backend

Keeps the ledger in one Google spreadsheet, one worksheet per entity, so
the owner can read it without any tooling. Every query reads the whole
worksheet and filters in Python.

LIMITS:
- No transactions: `atomic()` is a pass-through, writes land in call order
- `claim_schedule` reads then writes, so two processes sharing one
  spreadsheet can both win a claim; run a single sweeper against it

Each entity worksheet uses the same row layout:
    id | user_id | updated_at | payload_json
where payload_json is the pydantic JSON dump of the whole model. The audit
worksheet keeps flat columns so it stays readable by hand.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Generic, Optional, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from finance_ledger.config import get_settings
from finance_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    ConnectionError,
    NotFoundError,
    NotificationStorageInterface,
    ScheduledTransactionStorageInterface,
    StorageBundle,
    StorageError,
    TransactionStorageInterface,
    UnitOfWork,
)


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Column layout shared by every entity worksheet
ENTITY_COLUMNS = ["id", "user_id", "updated_at", "payload_json"]

# Audit worksheet columns, flat so the trail reads well by hand
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "user_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

_sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Lazily authorized gspread handle with cached worksheets.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @_sheets_retry
    def connect(self) -> gspread.Client:
        """
        Authorize with the service account key file.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Open the spreadsheet named by the settings."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        if title in self._worksheets:
            return self._worksheets[title]

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        self._worksheets[title] = sheet
        return sheet

    @property
    def settings(self):
        """Sheets settings, including the worksheet names."""
        return self._settings


class GoogleSheetsUnitOfWork(UnitOfWork):
    """Sheets has no transactions; the scope only groups writes for readability."""

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        yield


class _SheetTable(Generic[ModelT]):
    """
    One entity worksheet.

    Rows are parsed with the model's own JSON validation. Malformed rows are
    logged and skipped rather than failing the whole read.
    """

    def __init__(
        self,
        client: GoogleSheetsClient,
        title: str,
        model_cls: type[ModelT],
        owner_of: Callable[[ModelT], str],
    ):
        self._client = client
        self._title = title
        self._model_cls = model_cls
        self._owner_of = owner_of

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._title, ENTITY_COLUMNS)

    def _to_row(self, model: ModelT) -> list:
        return [
            str(model.id),
            self._owner_of(model),
            datetime.utcnow().isoformat(),
            model.model_dump_json(),
        ]

    def _from_row(self, row: list) -> Optional[ModelT]:
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        payload = safe_get(3)
        if not payload:
            return None
        try:
            return self._model_cls.model_validate_json(payload)
        except ValueError as e:
            logger.warning(
                "sheets_row_malformed",
                worksheet=self._title,
                row_id=safe_get(0),
                error=str(e),
            )
            return None

    @_sheets_retry
    def _rows(self) -> list[list]:
        # Skip header
        return self._sheet().get_all_values()[1:]

    def all(self) -> list[ModelT]:
        models = []
        for row in self._rows():
            if not row or not row[0]:
                continue
            model = self._from_row(row)
            if model is not None:
                models.append(model)
        return models

    def find(self, entity_id: UUID) -> Optional[ModelT]:
        for row in self._rows():
            if row and row[0] == str(entity_id):
                return self._from_row(row)
        return None

    def _row_index(self, entity_id: UUID) -> Optional[int]:
        # Row 1 is the header
        for idx, row in enumerate(self._rows(), start=2):
            if row and row[0] == str(entity_id):
                return idx
        return None

    @_sheets_retry
    def insert(self, model: ModelT) -> None:
        self._sheet().append_row(self._to_row(model), value_input_option="RAW")

    @_sheets_retry
    def replace(self, model: ModelT) -> bool:
        idx = self._row_index(model.id)
        if idx is None:
            return False
        self._sheet().update(
            f"A{idx}:D{idx}",
            [self._to_row(model)],
            value_input_option="RAW",
        )
        return True

    def upsert(self, model: ModelT) -> None:
        if not self.replace(model):
            self.insert(model)

    @_sheets_retry
    def remove(self, entity_id: UUID) -> bool:
        idx = self._row_index(entity_id)
        if idx is None:
            return False
        self._sheet().delete_rows(idx)
        return True


class GoogleSheetsAccountStorage(AccountStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client,
            self._client.settings.accounts_sheet_name,
            Account,
            lambda a: a.user_id,
        )

    async def save_account(self, account: Account) -> bool:
        try:
            self._table.upsert(account)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save account: {e}")

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        try:
            return self._table.find(account_id)
        except Exception as e:
            raise StorageError(f"Failed to get account: {e}")

    async def increment_balance(self, account_id: UUID, delta: Decimal) -> Account:
        try:
            account = self._table.find(account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {account_id}")
            account.balance += delta
            account.updated_at = datetime.utcnow()
            self._table.replace(account)
            return account
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update account balance: {e}")


class GoogleSheetsCategoryStorage(CategoryStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client,
            self._client.settings.categories_sheet_name,
            Category,
            lambda c: c.user_id,
        )

    async def save_category(self, category: Category) -> bool:
        try:
            self._table.upsert(category)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save category: {e}")

    async def get_categories(
        self,
        category_ids: list[UUID],
        user_id: str,
    ) -> list[Category]:
        try:
            wanted = set(category_ids)
            return [
                c for c in self._table.all()
                if c.id in wanted and c.user_id == user_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get categories: {e}")


class GoogleSheetsTransactionStorage(TransactionStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client,
            self._client.settings.transactions_sheet_name,
            Transaction,
            lambda t: t.user_id,
        )

    async def save_transaction(self, transaction: Transaction) -> bool:
        try:
            self._table.insert(transaction)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            return self._table.find(transaction_id)
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def update_transaction(self, transaction: Transaction) -> bool:
        try:
            transaction.updated_at = datetime.utcnow()
            if not self._table.replace(transaction):
                raise NotFoundError(f"Transaction not found: {transaction.id}")
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            return self._table.remove(transaction_id)
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    async def list_transactions(
        self,
        user_id: str,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        account_id: Optional[UUID] = None,
        scheduled_transaction_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        try:
            transactions = []
            for transaction in self._table.all():
                # Apply filters
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
                transactions.append(transaction)

            transactions.sort(key=lambda t: t.date)
            return transactions
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")


class GoogleSheetsScheduledTransactionStorage(ScheduledTransactionStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client,
            self._client.settings.schedules_sheet_name,
            ScheduledTransaction,
            lambda s: s.user_id,
        )

    def _patched(self, schedule: ScheduledTransaction, patch: dict[str, Any]) -> ScheduledTransaction:
        updated = schedule.model_copy(update={**patch, "updated_at": datetime.utcnow()})
        self._table.replace(updated)
        return updated

    async def save_schedule(self, schedule: ScheduledTransaction) -> bool:
        try:
            self._table.upsert(schedule)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save schedule: {e}")

    async def get_schedule(self, schedule_id: UUID) -> Optional[ScheduledTransaction]:
        try:
            return self._table.find(schedule_id)
        except Exception as e:
            raise StorageError(f"Failed to get schedule: {e}")

    async def update_schedule(
        self,
        schedule_id: UUID,
        patch: dict[str, Any],
    ) -> ScheduledTransaction:
        try:
            schedule = self._table.find(schedule_id)
            if schedule is None:
                raise NotFoundError(f"Scheduled transaction not found: {schedule_id}")
            return self._patched(schedule, patch)
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update schedule: {e}")

    async def claim_schedule(
        self,
        schedule_id: UUID,
        expected_status: ScheduleStatus,
        expected_next_execution_date: datetime,
        patch: dict[str, Any],
    ) -> Optional[ScheduledTransaction]:
        try:
            schedule = self._table.find(schedule_id)
            if schedule is None:
                return None
            if (
                schedule.status != expected_status
                or schedule.next_execution_date != expected_next_execution_date
            ):
                return None
            return self._patched(schedule, patch)
        except Exception as e:
            raise StorageError(f"Failed to claim schedule: {e}")

    async def delete_schedule(self, schedule_id: UUID) -> bool:
        try:
            return self._table.remove(schedule_id)
        except Exception as e:
            raise StorageError(f"Failed to delete schedule: {e}")

    async def find_due(self, now: datetime) -> list[ScheduledTransaction]:
        try:
            due = [s for s in self._table.all() if s.is_due(now)]
            due.sort(key=lambda s: s.next_execution_date)
            return due
        except Exception as e:
            raise StorageError(f"Failed to find due schedules: {e}")

    async def list_schedules(
        self,
        user_id: str,
        status: Optional[ScheduleStatus] = None,
        account_id: Optional[UUID] = None,
        frequency: Optional[Frequency] = None,
    ) -> list[ScheduledTransaction]:
        try:
            schedules = [
                s for s in self._table.all()
                if s.user_id == user_id
                and (status is None or s.status == status)
                and (account_id is None or s.account_id == account_id)
                and (frequency is None or s.frequency == frequency)
            ]
            schedules.sort(key=lambda s: s.next_execution_date)
            return schedules
        except Exception as e:
            raise StorageError(f"Failed to list schedules: {e}")


class GoogleSheetsBudgetStorage(BudgetStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client,
            self._client.settings.budgets_sheet_name,
            Budget,
            lambda b: b.user_id,
        )

    async def save_budget(self, budget: Budget) -> bool:
        try:
            self._table.insert(budget)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save budget: {e}")

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        try:
            return self._table.find(budget_id)
        except Exception as e:
            raise StorageError(f"Failed to get budget: {e}")

    async def update_budget(self, budget: Budget) -> bool:
        try:
            budget.updated_at = datetime.utcnow()
            if not self._table.replace(budget):
                raise NotFoundError(f"Budget not found: {budget.id}")
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update budget: {e}")

    async def delete_budget(self, budget_id: UUID) -> bool:
        try:
            return self._table.remove(budget_id)
        except Exception as e:
            raise StorageError(f"Failed to delete budget: {e}")

    async def find_active_for_owner_in_period(
        self,
        user_id: str,
        moment: datetime,
        category_id: Optional[UUID] = None,
    ) -> list[Budget]:
        try:
            return [
                b for b in self._table.all()
                if b.user_id == user_id
                and b.is_active
                and b.covers(moment)
                and b.tracks(category_id)
            ]
        except Exception as e:
            raise StorageError(f"Failed to find budgets: {e}")

    async def list_budgets(
        self,
        user_id: str,
        is_active: Optional[bool] = None,
        on_date: Optional[datetime] = None,
        period_type: Optional[BudgetPeriodType] = None,
    ) -> list[Budget]:
        try:
            budgets = [
                b for b in self._table.all()
                if b.user_id == user_id
                and (is_active is None or b.is_active == is_active)
                and (on_date is None or b.covers(on_date))
                and (period_type is None or b.period_type == period_type)
            ]
            budgets.sort(key=lambda b: b.created_at, reverse=True)
            return budgets
        except Exception as e:
            raise StorageError(f"Failed to list budgets: {e}")


class GoogleSheetsNotificationStorage(NotificationStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = _SheetTable(
            self._client,
            self._client.settings.notifications_sheet_name,
            Notification,
            lambda n: n.user_id,
        )

    def _matching(
        self,
        user_id: str,
        is_read: Optional[bool],
        notification_type: Optional[NotificationType],
    ) -> list[Notification]:
        return [
            n for n in self._table.all()
            if n.user_id == user_id
            and (is_read is None or n.is_read == is_read)
            and (notification_type is None or n.type == notification_type)
        ]

    async def create_notification(self, notification: Notification) -> bool:
        try:
            self._table.insert(notification)
            return True
        except Exception as e:
            raise StorageError(f"Failed to create notification: {e}")

    async def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        try:
            return self._table.find(notification_id)
        except Exception as e:
            raise StorageError(f"Failed to get notification: {e}")

    async def find_unread(
        self,
        user_id: str,
        notification_type: NotificationType,
        related_id: Optional[UUID],
        category_name: Optional[str] = None,
    ) -> Optional[Notification]:
        try:
            for notification in self._matching(user_id, False, notification_type):
                if notification.related_id != related_id:
                    continue
                if (
                    notification_type in CATEGORY_NOTIFICATION_TYPES
                    and notification.data.category_name != category_name
                ):
                    continue
                return notification
            return None
        except Exception as e:
            raise StorageError(f"Failed to find notification: {e}")

    async def list_notifications(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> list[Notification]:
        try:
            notifications = self._matching(user_id, is_read, notification_type)
            notifications.sort(key=lambda n: n.created_at, reverse=True)
            return notifications
        except Exception as e:
            raise StorageError(f"Failed to list notifications: {e}")

    async def mark_read(
        self,
        notification_id: UUID,
        user_id: str,
        read_at: datetime,
    ) -> Optional[Notification]:
        try:
            notification = self._table.find(notification_id)
            if notification is None or notification.user_id != user_id:
                return None
            notification.is_read = True
            notification.read_at = read_at
            self._table.replace(notification)
            return notification
        except Exception as e:
            raise StorageError(f"Failed to mark notification read: {e}")

    async def mark_all_read(
        self,
        user_id: str,
        read_at: datetime,
        notification_type: Optional[NotificationType] = None,
    ) -> int:
        try:
            unread = self._matching(user_id, False, notification_type)
            for notification in unread:
                notification.is_read = True
                notification.read_at = read_at
                self._table.replace(notification)
            return len(unread)
        except Exception as e:
            raise StorageError(f"Failed to mark notifications read: {e}")

    async def delete_notification(self, notification_id: UUID, user_id: str) -> bool:
        try:
            notification = self._table.find(notification_id)
            if notification is None or notification.user_id != user_id:
                return False
            return self._table.remove(notification_id)
        except Exception as e:
            raise StorageError(f"Failed to delete notification: {e}")

    async def delete_notifications(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> int:
        try:
            doomed = self._matching(user_id, is_read, notification_type)
            for notification in doomed:
                self._table.remove(notification.id)
            return len(doomed)
        except Exception as e:
            raise StorageError(f"Failed to delete notifications: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Audit trail worksheet.

    A failed append is logged and reported as False.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            user_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    def _events(self, predicate: Callable[[list], bool]) -> list[AuditEvent]:
        events = []
        for row in self._sheet().get_all_values()[1:]:
            if not row or not row[0] or not predicate(row):
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    @_sheets_retry
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            logger.warning("audit_event_write_failed", error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = self._events(
                lambda row: len(row) > 7 and row[7] == str(correlation_id)
            )
            # Sort chronologically
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = self._events(
                lambda row: len(row) > 5
                and row[4] == entity_type
                and row[5] == str(entity_id)
            )
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._events(lambda row: True)
            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")


def create_google_sheets_storage(client: Optional[GoogleSheetsClient] = None) -> StorageBundle:
    """Build a StorageBundle whose stores share one Sheets client."""
    client = client or GoogleSheetsClient()
    return StorageBundle(
        unit_of_work=GoogleSheetsUnitOfWork(),
        accounts=GoogleSheetsAccountStorage(client),
        categories=GoogleSheetsCategoryStorage(client),
        transactions=GoogleSheetsTransactionStorage(client),
        schedules=GoogleSheetsScheduledTransactionStorage(client),
        budgets=GoogleSheetsBudgetStorage(client),
        notifications=GoogleSheetsNotificationStorage(client),
        audit=GoogleSheetsAuditStorage(client),
    )
