"""Tests for the scheduled transaction sweep."""

import asyncio
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from finance_ledger.models import (
    Frequency,
    NotificationType,
    ScheduleStatus,
    SweepOutcome,
    TransactionType,
)
from finance_ledger.orchestrator import SweepRunner
from finance_ledger.scheduling import ScheduledTransactionProcessor
from finance_ledger.services.ledger import TransactionLedgerGateway


USER = "user-1"
DUE = datetime(2024, 3, 15, 9, 0)
NOW = datetime(2024, 3, 15, 12, 0)


class ExplodingGateway(TransactionLedgerGateway):
    """Creates the transaction, then fails before the scope closes."""

    async def create_transaction(self, user_id, draft, correlation_id=None):
        await super().create_transaction(user_id, draft, correlation_id)
        raise RuntimeError("ledger write failed")


class SlowGateway(TransactionLedgerGateway):

    async def create_transaction(self, user_id, draft, correlation_id=None):
        result = await super().create_transaction(user_id, draft, correlation_id)
        await asyncio.sleep(5)
        return result


def _processor_with(components, gateway_cls, **kwargs):
    gateway = gateway_cls(
        components.storage,
        components.aggregator,
        components.deduper,
        components.audit_logger,
    )
    return ScheduledTransactionProcessor(components.storage, gateway, **kwargs)


class TestSweepOutcomes:

    @pytest.mark.asyncio
    async def test_nothing_due(self, components):
        result = await components.processor.sweep(NOW)
        assert result.total_due == 0
        assert result.processed == 0
        assert result.errors == 0

    @pytest.mark.asyncio
    async def test_auto_executes_expense(self, components, storage, make_account, make_schedule):
        account = await make_account("1000")
        schedule = await make_schedule(account_id=account.id, amount="250")

        result = await components.processor.sweep(NOW)

        assert result.auto_executed == 1
        assert result.processed == 1
        detail = result.details[0]
        assert detail.outcome == SweepOutcome.AUTO_EXECUTED

        transaction = await storage.transactions.get_transaction(detail.transaction_id)
        assert transaction.scheduled_transaction_id == schedule.id
        assert transaction.is_recurring is True
        assert transaction.amount == Decimal("250")
        assert transaction.date == NOW

        assert (await storage.accounts.get_account(account.id)).balance == Decimal("750")

        stored = await storage.schedules.get_schedule(schedule.id)
        assert stored.next_execution_date == datetime(2024, 4, 15, 9, 0)
        assert stored.last_execution_date == NOW
        assert stored.status == ScheduleStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_income_and_transfer_balance_effects(self, components, storage, make_account, make_schedule):
        account = await make_account("100")
        await make_schedule(account_id=account.id, amount="40", transaction_type=TransactionType.INCOME)
        await make_schedule(account_id=account.id, amount="500", transaction_type=TransactionType.TRANSFER)

        result = await components.processor.sweep(NOW)

        assert result.auto_executed == 2
        assert (await storage.accounts.get_account(account.id)).balance == Decimal("140")

    @pytest.mark.asyncio
    async def test_pending_approval_only_advances(self, components, storage, make_account, make_schedule):
        account = await make_account("1000")
        schedule = await make_schedule(account_id=account.id, auto_execute=False)

        result = await components.processor.sweep(NOW)

        assert result.pending_approval == 1
        assert result.details[0].next_execution_date == datetime(2024, 4, 15, 9, 0)
        assert await storage.transactions.list_transactions(USER) == []
        assert (await storage.accounts.get_account(account.id)).balance == Decimal("1000")

        stored = await storage.schedules.get_schedule(schedule.id)
        assert stored.next_execution_date == datetime(2024, 4, 15, 9, 0)
        assert stored.last_execution_date == NOW

    @pytest.mark.asyncio
    async def test_advancing_past_end_date_completes(self, components, storage, make_account, make_schedule):
        account = await make_account("1000")
        schedule = await make_schedule(
            account_id=account.id,
            end_date=datetime(2024, 3, 31),
        )

        await components.processor.sweep(NOW)

        stored = await storage.schedules.get_schedule(schedule.id)
        assert stored.status == ScheduleStatus.COMPLETED
        assert len(await storage.transactions.list_transactions(USER)) == 1

    @pytest.mark.asyncio
    async def test_insufficient_funds_pauses(self, components, storage, make_account, make_schedule):
        account = await make_account("100")
        schedule = await make_schedule(account_id=account.id, amount="100.01")

        result = await components.processor.sweep(NOW)

        assert result.insufficient_funds == 1
        assert result.processed == 0
        assert result.errors == 0
        stored = await storage.schedules.get_schedule(schedule.id)
        assert stored.status == ScheduleStatus.PAUSED
        assert stored.next_execution_date == DUE
        assert stored.last_execution_date == NOW
        assert await storage.transactions.list_transactions(USER) == []

    @pytest.mark.asyncio
    async def test_exact_balance_is_enough(self, components, make_account, make_schedule):
        account = await make_account("100")
        await make_schedule(account_id=account.id, amount="100")

        result = await components.processor.sweep(NOW)

        assert result.auto_executed == 1

    @pytest.mark.asyncio
    async def test_missing_account_is_an_item_error(self, components, storage, make_account, make_schedule):
        orphan = await make_schedule()
        account = await make_account("1000")
        healthy = await make_schedule(account_id=account.id)

        result = await components.processor.sweep(NOW)

        assert result.errors == 1
        assert result.auto_executed == 1
        failed = next(d for d in result.details if d.outcome == SweepOutcome.ERROR)
        assert failed.scheduled_transaction_id == orphan.id
        assert "Account not found" in failed.message

        # The failed item stays due for the next sweep
        assert (await storage.schedules.get_schedule(orphan.id)).next_execution_date == DUE
        assert (await storage.schedules.get_schedule(healthy.id)).next_execution_date > DUE


class TestSweepSafety:

    @pytest.mark.asyncio
    async def test_second_sweep_with_same_now_is_a_no_op(self, components, storage, make_account, make_schedule):
        account = await make_account("1000")
        await make_schedule(account_id=account.id, amount="100")

        first = await components.processor.sweep(NOW)
        second = await components.processor.sweep(NOW)

        assert first.auto_executed == 1
        assert second.total_due == 0
        assert len(await storage.transactions.list_transactions(USER)) == 1
        assert (await storage.accounts.get_account(account.id)).balance == Decimal("900")

    @pytest.mark.asyncio
    async def test_stale_item_is_skipped(self, components, storage, make_account, make_schedule, monkeypatch):
        """An overlapping sweep holding a stale copy cannot execute it again."""
        account = await make_account("1000")
        await make_schedule(account_id=account.id, amount="100")
        stale = await storage.schedules.find_due(NOW)

        await components.processor.sweep(NOW)

        async def stale_due(now):
            return stale

        monkeypatch.setattr(storage.schedules, "find_due", stale_due)
        result = await components.processor.sweep(NOW)

        assert result.skipped == 1
        assert result.processed == 0
        assert len(await storage.transactions.list_transactions(USER)) == 1
        assert (await storage.accounts.get_account(account.id)).balance == Decimal("900")

    @pytest.mark.asyncio
    async def test_failure_mid_item_rolls_back(self, components, storage, make_account, make_schedule):
        account = await make_account("1000")
        schedule = await make_schedule(account_id=account.id, amount="100")
        processor = _processor_with(components, ExplodingGateway)

        result = await processor.sweep(NOW)

        assert result.errors == 1
        assert result.details[0].message == "ledger write failed"
        assert await storage.transactions.list_transactions(USER) == []
        assert (await storage.accounts.get_account(account.id)).balance == Decimal("1000")
        stored = await storage.schedules.get_schedule(schedule.id)
        assert stored.next_execution_date == DUE
        assert stored.status == ScheduleStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_item_timeout_is_an_error(self, components, storage, make_account, make_schedule):
        account = await make_account("1000")
        schedule = await make_schedule(account_id=account.id, amount="100")
        processor = _processor_with(components, SlowGateway, item_timeout_seconds=0.05)

        result = await processor.sweep(NOW)

        assert result.errors == 1
        assert "Timed out" in result.details[0].message
        assert (await storage.schedules.get_schedule(schedule.id)).next_execution_date == DUE
        assert (await storage.accounts.get_account(account.id)).balance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_catches_up_one_occurrence_per_sweep(self, components, storage, make_account, make_schedule):
        account = await make_account("1000")
        schedule = await make_schedule(
            account_id=account.id,
            amount="10",
            frequency=Frequency.DAILY,
            next_execution_date=NOW - timedelta(days=2),
        )

        for _ in range(3):
            await components.processor.sweep(NOW)

        assert len(await storage.transactions.list_transactions(USER)) == 3
        stored = await storage.schedules.get_schedule(schedule.id)
        assert stored.next_execution_date == NOW - timedelta(days=2) + timedelta(days=3)


class TestSweepIntegration:

    @pytest.mark.asyncio
    async def test_end_to_end_unfunded_expense_pauses(self, components, storage, make_account, make_schedule):
        # create_schedule puts the first run one period after start, so the
        # "due today, swept tomorrow" case seeds the due date directly
        today = datetime(2024, 5, 10, 8, 0)
        account = await make_account("1000")
        schedule = await make_schedule(
            account_id=account.id,
            amount="1500",
            next_execution_date=today,
        )

        result = await components.processor.sweep(today + timedelta(days=1))

        assert result.insufficient_funds == 1
        assert result.processed == 0
        assert (await storage.schedules.get_schedule(schedule.id)).status == ScheduleStatus.PAUSED
        assert (await storage.accounts.get_account(account.id)).balance == Decimal("1000")
        assert await storage.transactions.list_transactions(USER) == []

    @pytest.mark.asyncio
    async def test_scheduled_expense_feeds_budgets(self, components, storage, make_account, make_budget, make_schedule):
        account = await make_account("1000")
        budget = await make_budget(total_limit="500")
        await make_schedule(account_id=account.id, amount="450")

        await components.processor.sweep(NOW)

        assert (await storage.budgets.get_budget(budget.id)).total_spent == Decimal("450")
        notifications = await storage.notifications.list_notifications(USER)
        assert [n.type for n in notifications] == [NotificationType.BUDGET_WARNING]

    @pytest.mark.asyncio
    async def test_sweep_events_share_a_correlation_id(self, components, storage, make_account, make_schedule):
        account = await make_account("1000")
        schedule = await make_schedule(account_id=account.id)

        await components.processor.sweep(NOW)

        events = await storage.audit.get_events_by_entity("schedule", schedule.id)
        assert events
        assert len({e.correlation_id for e in events}) == 1


class FakeProcessor:

    def __init__(self):
        self.release = asyncio.Event()
        self.calls = []

    async def sweep(self, now):
        self.calls.append(now)
        await self.release.wait()
        return now


class TestSweepRunner:

    @pytest.mark.asyncio
    async def test_run_once_uses_given_time(self, components, make_account, make_schedule):
        account = await make_account("1000")
        await make_schedule(account_id=account.id)

        result = await components.runner.run_once(NOW)

        assert result.swept_at == NOW
        assert result.auto_executed == 1

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self):
        processor = FakeProcessor()
        runner = SweepRunner(processor, interval_seconds=60, clock=lambda: NOW)

        first = asyncio.create_task(runner.run_once())
        await asyncio.sleep(0)
        assert runner.is_sweeping is True
        assert await runner.run_once() is None

        processor.release.set()
        assert await first == NOW
        assert processor.calls == [NOW]

    @pytest.mark.asyncio
    async def test_run_forever_stops(self):
        processor = FakeProcessor()
        processor.release.set()
        runner = SweepRunner(processor, interval_seconds=0.01, clock=lambda: NOW)

        task = asyncio.create_task(runner.run_forever())
        await asyncio.sleep(0.05)
        runner.stop()
        await asyncio.wait_for(task, timeout=1)

        assert len(processor.calls) >= 1
