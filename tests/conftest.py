"""
Shared fixtures.

Every test gets a fresh in-memory backend wired through the real
application factory. Factories are plain fixtures returning coroutines so
tests stay in control of when data is seeded.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from finance_ledger.models import (
    Account,
    Budget,
    BudgetCategory,
    BudgetPeriodType,
    Category,
    CategoryType,
    Frequency,
    ScheduledTransaction,
    TransactionType,
)
from finance_ledger.orchestrator import create_app_components
from finance_ledger.services.storage import create_in_memory_storage


USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture
def components():
    return create_app_components(storage=create_in_memory_storage())


@pytest.fixture
def storage(components):
    return components.storage


@pytest.fixture
def make_account(storage):
    async def _make(balance="1000", user_id=USER, name="Main"):
        account = Account(user_id=user_id, name=name, balance=Decimal(balance))
        await storage.accounts.save_account(account)
        return account
    return _make


@pytest.fixture
def make_category(storage):
    async def _make(name="Groceries", user_id=USER, category_type=CategoryType.EXPENSE):
        category = Category(user_id=user_id, name=name, type=category_type)
        await storage.categories.save_category(category)
        return category
    return _make


@pytest.fixture
def make_budget(storage):
    async def _make(
        total_limit="500",
        categories=None,
        start=datetime(2024, 3, 1),
        end=datetime(2024, 3, 31, 23, 59, 59),
        threshold=80,
        user_id=USER,
        is_active=True,
    ):
        entries = [
            BudgetCategory(category_id=c.id, category_name=c.name, limit=Decimal(limit))
            for c, limit in (categories or [])
        ]
        budget = Budget(
            user_id=user_id,
            name="March",
            period_type=BudgetPeriodType.MONTHLY,
            start_date=start,
            end_date=end,
            categories=entries,
            total_limit=(
                sum((e.limit for e in entries), Decimal("0"))
                if entries
                else Decimal(total_limit)
            ),
            notification_threshold=threshold,
            is_active=is_active,
        )
        await storage.budgets.save_budget(budget)
        return budget
    return _make


@pytest.fixture
def make_schedule(storage):
    """Store a schedule that is due at `next_execution_date`."""
    async def _make(
        account_id=None,
        amount="100",
        transaction_type=TransactionType.EXPENSE,
        auto_execute=True,
        next_execution_date=datetime(2024, 3, 15, 9, 0),
        frequency=Frequency.MONTHLY,
        end_date=None,
        category_id=None,
        user_id=USER,
    ):
        schedule = ScheduledTransaction(
            user_id=user_id,
            account_id=account_id or uuid4(),
            category_id=category_id,
            amount=Decimal(amount),
            type=transaction_type,
            frequency=frequency,
            start_date=next_execution_date,
            end_date=end_date,
            next_execution_date=next_execution_date,
            auto_execute=auto_execute,
        )
        await storage.schedules.save_schedule(schedule)
        return schedule
    return _make
