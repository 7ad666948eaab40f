"""Tests for the user-facing schedule and budget operations."""

import pytest
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from finance_ledger.budgets import BudgetError, BudgetManager
from finance_ledger.models import (
    BudgetCategoryDraft,
    BudgetDraft,
    BudgetPeriodType,
    BudgetUpdate,
    CategoryType,
    Frequency,
    NotificationType,
    ScheduleDraft,
    ScheduleStatus,
    ScheduleUpdate,
    Transaction,
    TransactionDraft,
    TransactionType,
)
from finance_ledger.scheduling import ScheduleError, ScheduleManager
from finance_ledger.services.storage import NotFoundError


USER = "user-1"
FRIDAY = datetime(2024, 3, 15, 9, 0)


def _schedule_draft(account, **overrides):
    fields = dict(
        account_id=account.id,
        amount=Decimal("100"),
        type=TransactionType.EXPENSE,
        frequency=Frequency.MONTHLY,
        start_date=FRIDAY,
        auto_execute=True,
    )
    fields.update(overrides)
    return ScheduleDraft(**fields)


def _budget_draft(**overrides):
    fields = dict(
        name="March",
        period_type=BudgetPeriodType.MONTHLY,
        start_date=datetime(2024, 3, 1),
        end_date=datetime(2024, 3, 31, 23, 59, 59),
    )
    fields.update(overrides)
    return BudgetDraft(**fields)


# =============================================================================
# SCHEDULES
# =============================================================================

class TestCreateSchedule:

    @pytest.mark.asyncio
    async def test_first_run_is_one_period_after_start(self, components, make_account):
        account = await make_account()

        schedule = await components.schedules.create_schedule(USER, _schedule_draft(account))

        assert schedule.status == ScheduleStatus.ACTIVE
        assert schedule.start_date == FRIDAY
        assert schedule.next_execution_date == datetime(2024, 4, 15, 9, 0)

    @pytest.mark.asyncio
    async def test_weekly_anchor(self, components, make_account):
        account = await make_account()

        schedule = await components.schedules.create_schedule(
            USER, _schedule_draft(account, frequency=Frequency.WEEKLY, day_of_week=1)
        )

        # Next Monday after Friday the 15th
        assert schedule.next_execution_date == datetime(2024, 3, 18, 9, 0)

    @pytest.mark.asyncio
    async def test_month_end_start_is_clamped(self, components, make_account):
        account = await make_account()

        schedule = await components.schedules.create_schedule(
            USER, _schedule_draft(account, start_date=datetime(2024, 1, 31))
        )

        assert schedule.next_execution_date == datetime(2024, 2, 29)

    @pytest.mark.asyncio
    async def test_start_defaults_to_now(self, components, make_account):
        account = await make_account()

        schedule = await components.schedules.create_schedule(
            USER, _schedule_draft(account, start_date=None, frequency=Frequency.DAILY), now=FRIDAY
        )

        assert schedule.start_date == FRIDAY
        assert schedule.next_execution_date == datetime(2024, 3, 16, 9, 0)

    @pytest.mark.asyncio
    async def test_end_before_start_is_rejected(self, components, make_account):
        account = await make_account()

        with pytest.raises(ValueError):
            await components.schedules.create_schedule(
                USER, _schedule_draft(account, end_date=datetime(2024, 3, 1))
            )

    @pytest.mark.asyncio
    async def test_foreign_account_is_rejected(self, components, make_account):
        account = await make_account(user_id="user-2")

        with pytest.raises(ScheduleError):
            await components.schedules.create_schedule(USER, _schedule_draft(account))

    @pytest.mark.asyncio
    async def test_missing_account_is_not_found(self, components):
        draft = ScheduleDraft(account_id=uuid4(), amount=Decimal("1"), type=TransactionType.EXPENSE)

        with pytest.raises(NotFoundError):
            await components.schedules.create_schedule(USER, draft)


class TestUpdateSchedule:

    @pytest.mark.asyncio
    async def test_recurrence_change_recomputes_next_date(self, components, make_account):
        account = await make_account()
        schedule = await components.schedules.create_schedule(USER, _schedule_draft(account))

        updated = await components.schedules.update_schedule(
            schedule.id, USER, ScheduleUpdate(frequency=Frequency.WEEKLY)
        )

        assert updated.frequency == Frequency.WEEKLY
        assert updated.next_execution_date == datetime(2024, 3, 22, 9, 0)

    @pytest.mark.asyncio
    async def test_other_changes_keep_next_date(self, components, make_account):
        account = await make_account()
        schedule = await components.schedules.create_schedule(USER, _schedule_draft(account))

        updated = await components.schedules.update_schedule(
            schedule.id, USER, ScheduleUpdate(amount=Decimal("250"), payee="Landlord")
        )

        assert updated.amount == Decimal("250")
        assert updated.payee == "Landlord"
        assert updated.next_execution_date == schedule.next_execution_date

    @pytest.mark.asyncio
    async def test_invalid_merge_writes_nothing(self, components, storage, make_account):
        account = await make_account()
        schedule = await components.schedules.create_schedule(USER, _schedule_draft(account))

        with pytest.raises(ValueError):
            await components.schedules.update_schedule(
                schedule.id, USER, ScheduleUpdate(end_date=datetime(2024, 1, 1))
            )

        stored = await storage.schedules.get_schedule(schedule.id)
        assert stored.end_date is None

    @pytest.mark.asyncio
    async def test_other_users_schedule_is_not_found(self, components, make_schedule):
        schedule = await make_schedule(user_id="user-2")

        with pytest.raises(NotFoundError):
            await components.schedules.update_schedule(
                schedule.id, USER, ScheduleUpdate(amount=Decimal("1"))
            )


class TestScheduleLifecycle:

    @pytest.mark.asyncio
    async def test_resume_keeps_due_date(self, components, storage, make_account, make_schedule):
        account = await make_account()
        schedule = await make_schedule(account_id=account.id)
        await storage.schedules.update_schedule(schedule.id, {"status": ScheduleStatus.PAUSED})

        resumed = await components.schedules.resume_schedule(schedule.id, USER)

        assert resumed.status == ScheduleStatus.ACTIVE
        assert resumed.next_execution_date == schedule.next_execution_date

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(self, components, make_account, make_schedule):
        account = await make_account()
        schedule = await make_schedule(account_id=account.id)

        cancelled = await components.schedules.cancel_schedule(schedule.id, USER)
        assert cancelled.status == ScheduleStatus.CANCELLED

        with pytest.raises(ScheduleError):
            await components.schedules.resume_schedule(schedule.id, USER)
        with pytest.raises(ScheduleError):
            await components.schedules.update_schedule(
                schedule.id, USER, ScheduleUpdate(status=ScheduleStatus.ACTIVE)
            )

    @pytest.mark.asyncio
    async def test_cancelled_is_never_swept(self, components, make_account, make_schedule):
        account = await make_account()
        schedule = await make_schedule(account_id=account.id)
        await components.schedules.cancel_schedule(schedule.id, USER)

        result = await components.processor.sweep(datetime(2024, 6, 1))

        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_delete(self, components, make_schedule):
        schedule = await make_schedule()

        await components.schedules.delete_schedule(schedule.id, USER)

        with pytest.raises(NotFoundError):
            await components.schedules.get_schedule(schedule.id, USER)

    @pytest.mark.asyncio
    async def test_upcoming_view(self, storage, make_schedule):
        manager = ScheduleManager(storage, upcoming_window_days=3)
        soon = await make_schedule(next_execution_date=datetime(2024, 3, 15, 9, 0))
        await make_schedule(next_execution_date=datetime(2024, 3, 20, 9, 0))
        stuck = await make_schedule(next_execution_date=datetime(2024, 3, 1))
        await storage.schedules.update_schedule(stuck.id, {"status": ScheduleStatus.PAUSED})
        await make_schedule(user_id="user-2", next_execution_date=datetime(2024, 3, 15))

        view = await manager.get_upcoming(USER, now=datetime(2024, 3, 14, 9, 0))

        assert [s.id for s in view.upcoming] == [soon.id]
        assert [s.id for s in view.insufficient_funds] == [stuck.id]

    @pytest.mark.asyncio
    async def test_list_filters(self, components, make_schedule):
        await make_schedule(frequency=Frequency.DAILY)
        monthly = await make_schedule(frequency=Frequency.MONTHLY)

        listed = await components.schedules.list_schedules(USER, frequency=Frequency.MONTHLY)

        assert [s.id for s in listed] == [monthly.id]


# =============================================================================
# BUDGETS
# =============================================================================

class TestCreateBudget:

    @pytest.mark.asyncio
    async def test_single_category(self, components, make_category):
        food = await make_category("Food")

        budget = await components.budgets.create_budget(
            USER, _budget_draft(category_id=food.id, amount=Decimal("300"))
        )

        assert budget.total_limit == Decimal("300")
        assert len(budget.categories) == 1
        assert budget.categories[0].category_name == "Food"
        assert budget.categories[0].spent == Decimal("0")

    @pytest.mark.asyncio
    async def test_category_list_sums_limits(self, components, make_category):
        food = await make_category("Food")
        fuel = await make_category("Fuel")

        budget = await components.budgets.create_budget(
            USER,
            _budget_draft(categories=[
                BudgetCategoryDraft(category_id=food.id, limit=Decimal("300")),
                BudgetCategoryDraft(category_id=fuel.id, limit=Decimal("150.50")),
            ]),
        )

        assert budget.total_limit == Decimal("450.50")
        assert [c.category_name for c in budget.categories] == ["Food", "Fuel"]

    @pytest.mark.asyncio
    async def test_total_only(self, components):
        budget = await components.budgets.create_budget(
            USER, _budget_draft(total_limit=Decimal("1200"))
        )

        assert budget.categories == []
        assert budget.total_limit == Decimal("1200")

    @pytest.mark.asyncio
    async def test_default_threshold(self, storage, components):
        manager = BudgetManager(
            storage.budgets,
            storage.categories,
            components.aggregator,
            components.deduper,
            default_threshold=75,
        )

        defaulted = await manager.create_budget(USER, _budget_draft(total_limit=Decimal("10")))
        explicit = await manager.create_budget(
            USER, _budget_draft(total_limit=Decimal("10"), notification_threshold=95)
        )

        assert defaulted.notification_threshold == 75
        assert explicit.notification_threshold == 95

    @pytest.mark.asyncio
    async def test_income_category_is_rejected(self, components, make_category):
        salary = await make_category("Salary", category_type=CategoryType.INCOME)

        with pytest.raises(NotFoundError):
            await components.budgets.create_budget(
                USER, _budget_draft(category_id=salary.id, amount=Decimal("100"))
            )

    @pytest.mark.asyncio
    async def test_foreign_category_is_rejected(self, components, make_category):
        food = await make_category("Food")
        theirs = await make_category("Food", user_id="user-2")

        with pytest.raises(NotFoundError):
            await components.budgets.create_budget(
                USER,
                _budget_draft(categories=[
                    BudgetCategoryDraft(category_id=food.id, limit=Decimal("10")),
                    BudgetCategoryDraft(category_id=theirs.id, limit=Decimal("10")),
                ]),
            )

        assert await components.budgets.list_budgets(USER) == []

    @pytest.mark.asyncio
    async def test_inverted_period_is_rejected(self, components):
        with pytest.raises(ValueError):
            await components.budgets.create_budget(
                USER,
                _budget_draft(start_date=datetime(2024, 3, 31), end_date=datetime(2024, 3, 1)),
            )


class TestUpdateBudget:

    @pytest.mark.asyncio
    async def test_new_category_list_keeps_spent(self, components, make_category, make_budget):
        food = await make_category("Food")
        fuel = await make_category("Fuel")
        budget = await make_budget(categories=[(food, "100"), (fuel, "100")])
        budget.categories[0].spent = Decimal("40")
        await components.storage.budgets.update_budget(budget)

        updated = await components.budgets.update_budget(
            budget.id,
            USER,
            BudgetUpdate(categories=[
                BudgetCategoryDraft(category_id=food.id, limit=Decimal("250")),
            ]),
        )

        assert updated.total_limit == Decimal("250")
        assert [(c.category_id, c.spent) for c in updated.categories] == [(food.id, Decimal("40"))]

    @pytest.mark.asyncio
    async def test_total_limit_on_category_budget_is_rejected(
        self, components, make_category, make_budget
    ):
        food = await make_category("Food")
        budget = await make_budget(categories=[(food, "100")])

        with pytest.raises(BudgetError):
            await components.budgets.update_budget(
                budget.id, USER, BudgetUpdate(total_limit=Decimal("999"))
            )

    @pytest.mark.asyncio
    async def test_total_limit_on_total_budget(self, components, make_budget):
        budget = await make_budget(total_limit="500")

        updated = await components.budgets.update_budget(
            budget.id, USER, BudgetUpdate(total_limit=Decimal("750"), name="Spring")
        )

        assert updated.total_limit == Decimal("750")
        assert updated.name == "Spring"

    @pytest.mark.asyncio
    async def test_delete_and_list(self, components, make_budget):
        kept = await make_budget()
        dropped = await make_budget()

        await components.budgets.delete_budget(dropped.id, USER)

        assert [b.id for b in await components.budgets.list_budgets(USER)] == [kept.id]
        with pytest.raises(NotFoundError):
            await components.budgets.get_budget(dropped.id, USER)


class TestBudgetProgress:

    @pytest.mark.asyncio
    async def test_progress_raises_notification(
        self, components, storage, make_account, make_budget
    ):
        account = await make_account("5000")
        budget = await make_budget(total_limit="500")
        await storage.transactions.save_transaction(
            _expense(account, "480")
        )

        progress = await components.budgets.get_progress(budget.id, USER)

        assert progress.total_progress.spent == Decimal("480")
        assert progress.total_progress.percentage == 96
        unread = await components.inbox.list(USER, is_read=False)
        assert [n.type for n in unread] == [NotificationType.BUDGET_WARNING]

    @pytest.mark.asyncio
    async def test_other_users_budget_is_not_found(self, components, make_budget):
        budget = await make_budget(user_id="user-2")

        with pytest.raises(NotFoundError):
            await components.budgets.get_progress(budget.id, USER)


def _expense(account, amount):
    draft = TransactionDraft(
        account_id=account.id,
        amount=Decimal(amount),
        type=TransactionType.EXPENSE,
        date=datetime(2024, 3, 10),
    )
    return Transaction(user_id=USER, **draft.model_dump(exclude_none=True))
