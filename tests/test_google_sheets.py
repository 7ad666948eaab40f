"""
Tests for the Google Sheets backend.

The gspread worksheet is replaced by an in-process fake so the row
encoding, lookups and conditional claim run without network access.
"""

import time

import pytest
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from finance_ledger.config import GoogleSheetsSettings
from finance_ledger.models import (
    Account,
    AuditEventBuilder,
    Frequency,
    Notification,
    NotificationData,
    NotificationType,
    ScheduledTransaction,
    ScheduleStatus,
    TransactionType,
)
from finance_ledger.services.storage import NotFoundError, StorageError, create_google_sheets_storage
from finance_ledger.services.storage.google_sheets import ENTITY_COLUMNS


USER = "user-1"
DUE = datetime(2024, 3, 15, 9, 0)


class FakeWorksheet:
    """The subset of gspread.Worksheet the storage layer calls."""

    def __init__(self, columns):
        self.rows = [list(columns)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def update(self, range_name, values, value_input_option=None):
        index = int(range_name.split(":")[0][1:]) - 1
        self.rows[index] = [str(v) for v in values[0]]

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:

    def __init__(self):
        self.worksheets = {}
        self.settings = GoogleSheetsSettings.model_construct(
            credentials_path="unused.json",
            spreadsheet_id="test-sheet",
        )

    def get_worksheet(self, title, columns, rows=1000):
        if title not in self.worksheets:
            self.worksheets[title] = FakeWorksheet(columns)
        return self.worksheets[title]


class BrokenSheetsClient(FakeSheetsClient):

    def get_worksheet(self, title, columns, rows=1000):
        raise RuntimeError("quota exceeded")


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda seconds: None)


@pytest.fixture
def client():
    return FakeSheetsClient()


@pytest.fixture
def sheets(client):
    return create_google_sheets_storage(client)


def _schedule(next_execution_date=DUE):
    return ScheduledTransaction(
        user_id=USER,
        account_id=uuid4(),
        amount=Decimal("100"),
        type=TransactionType.EXPENSE,
        frequency=Frequency.MONTHLY,
        start_date=next_execution_date,
        next_execution_date=next_execution_date,
        auto_execute=True,
    )


class TestEntityRows:

    @pytest.mark.asyncio
    async def test_rows_use_the_shared_layout(self, sheets, client):
        account = Account(user_id=USER, name="Main", balance=Decimal("12.50"))

        await sheets.accounts.save_account(account)

        sheet = client.worksheets["Accounts"]
        assert sheet.rows[0] == ENTITY_COLUMNS
        assert sheet.rows[1][0] == str(account.id)
        assert sheet.rows[1][1] == USER

    @pytest.mark.asyncio
    async def test_decimal_round_trip_and_balance_update(self, sheets):
        account = Account(user_id=USER, name="Main", balance=Decimal("12.50"))
        await sheets.accounts.save_account(account)

        await sheets.accounts.increment_balance(account.id, Decimal("-2.25"))

        stored = await sheets.accounts.get_account(account.id)
        assert stored.balance == Decimal("10.25")

    @pytest.mark.asyncio
    async def test_increment_unknown_account(self, sheets):
        with pytest.raises(NotFoundError):
            await sheets.accounts.increment_balance(uuid4(), Decimal("1"))

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, sheets, client):
        schedule = _schedule()
        await sheets.schedules.save_schedule(schedule)
        client.worksheets["ScheduledTransactions"].rows.append(
            [str(uuid4()), USER, "", "{not json"]
        )

        listed = await sheets.schedules.list_schedules(USER)

        assert [s.id for s in listed] == [schedule.id]

    @pytest.mark.asyncio
    async def test_backend_failure_becomes_storage_error(self, no_backoff):
        sheets = create_google_sheets_storage(BrokenSheetsClient())

        with pytest.raises(StorageError):
            await sheets.accounts.get_account(uuid4())


class TestSchedules:

    @pytest.mark.asyncio
    async def test_claim_compares_before_writing(self, sheets):
        schedule = _schedule()
        await sheets.schedules.save_schedule(schedule)
        patch = {"next_execution_date": datetime(2024, 4, 15, 9, 0), "last_execution_date": DUE}

        first = await sheets.schedules.claim_schedule(schedule.id, ScheduleStatus.ACTIVE, DUE, patch)
        second = await sheets.schedules.claim_schedule(schedule.id, ScheduleStatus.ACTIVE, DUE, patch)

        assert first.next_execution_date == datetime(2024, 4, 15, 9, 0)
        assert second is None
        stored = await sheets.schedules.get_schedule(schedule.id)
        assert stored.last_execution_date == DUE

    @pytest.mark.asyncio
    async def test_find_due_and_delete(self, sheets):
        late = _schedule(datetime(2024, 3, 14))
        early = _schedule(datetime(2024, 3, 1))
        future = _schedule(datetime(2024, 4, 1))
        for schedule in (late, early, future):
            await sheets.schedules.save_schedule(schedule)

        due = await sheets.schedules.find_due(DUE)
        assert [s.id for s in due] == [early.id, late.id]

        assert await sheets.schedules.delete_schedule(early.id) is True
        assert await sheets.schedules.get_schedule(early.id) is None


class TestNotifications:

    @pytest.mark.asyncio
    async def test_find_unread_and_mark_read(self, sheets):
        budget_id = uuid4()
        notification = Notification(
            user_id=USER,
            type=NotificationType.BUDGET_WARNING,
            title="Total Budget Warning",
            message="Budget alert",
            related_id=budget_id,
        )
        await sheets.notifications.create_notification(notification)

        found = await sheets.notifications.find_unread(USER, NotificationType.BUDGET_WARNING, budget_id)
        assert found.id == notification.id

        await sheets.notifications.mark_read(notification.id, USER, DUE)

        assert await sheets.notifications.find_unread(
            USER, NotificationType.BUDGET_WARNING, budget_id
        ) is None


    @pytest.mark.asyncio
    async def test_category_lookup_matches_name_exactly(self, sheets):
        budget_id = uuid4()
        await sheets.notifications.create_notification(Notification(
            user_id=USER,
            type=NotificationType.CATEGORY_WARNING,
            title="Category Budget Warning",
            message="Budget alert",
            related_id=budget_id,
            data=NotificationData(category_name="Food"),
        ))

        assert await sheets.notifications.find_unread(
            USER, NotificationType.CATEGORY_WARNING, budget_id, category_name=None
        ) is None
        assert await sheets.notifications.find_unread(
            USER, NotificationType.CATEGORY_WARNING, budget_id, category_name="Food"
        ) is not None


class TestAudit:

    @pytest.mark.asyncio
    async def test_events_round_trip(self, sheets):
        correlation_id = uuid4()
        event = AuditEventBuilder.sweep_started(correlation_id=correlation_id, now=DUE, due_count=2)

        assert await sheets.audit.append_event(event) is True

        events = await sheets.audit.get_events_by_correlation_id(correlation_id)
        assert [e.event_id for e in events] == [event.event_id]
        assert events[0].details == event.details

    @pytest.mark.asyncio
    async def test_write_failure_is_reported_not_raised(self):
        sheets = create_google_sheets_storage(BrokenSheetsClient())
        event = AuditEventBuilder.sweep_started(correlation_id=uuid4(), now=DUE, due_count=0)

        assert await sheets.audit.append_event(event) is False
