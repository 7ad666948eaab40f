"""
Budget Management

User-facing budget operations on top of the aggregator.

A budget is created in one of three shapes:
1. single category: `category_id` + `amount`, total limit = amount
2. category list: total limit = sum of the category limits
3. total only: no categories, explicit `total_limit`

Category names are snapshotted from the category directory when a budget is
created or its category list replaced. Only expense categories of the owner
are accepted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from finance_ledger.budgets.aggregator import BudgetAggregator
from finance_ledger.models.budget import (
    Budget,
    BudgetCategory,
    BudgetCategoryDraft,
    BudgetDraft,
    BudgetPeriodType,
    BudgetProgress,
    BudgetUpdate,
)
from finance_ledger.models.ledger import Category, CategoryType
from finance_ledger.notifications.deduper import NotificationDeduper
from finance_ledger.services.storage import (
    BudgetStorageInterface,
    CategoryStorageInterface,
    NotFoundError,
)


logger = structlog.get_logger(__name__)


class BudgetError(Exception):
    """Budget input that cannot be applied."""
    pass


class BudgetManager:

    def __init__(
        self,
        budgets: BudgetStorageInterface,
        categories: CategoryStorageInterface,
        aggregator: BudgetAggregator,
        deduper: NotificationDeduper,
        default_threshold: int = 80,
    ):
        self._budgets = budgets
        self._categories = categories
        self._aggregator = aggregator
        self._deduper = deduper
        self._default_threshold = default_threshold

    async def _expense_categories(
        self,
        entries: list[BudgetCategoryDraft],
        user_id: str,
    ) -> dict[UUID, Category]:
        """
        Resolve every requested category or fail as a whole.

        Raises:
            NotFoundError: If any category is missing, foreign, duplicated
                or not an expense category
        """
        requested = [entry.category_id for entry in entries]
        found = await self._categories.get_categories(requested, user_id)
        usable = {c.id: c for c in found if c.type == CategoryType.EXPENSE}
        if len(usable) != len(requested):
            raise NotFoundError(
                "One or more categories not found or do not belong to the user"
            )
        return usable

    async def get_budget(self, budget_id: UUID, user_id: str) -> Budget:
        """
        Raises:
            NotFoundError: If the budget doesn't exist for this user
        """
        budget = await self._budgets.get_budget(budget_id)
        if budget is None or budget.user_id != user_id:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return budget

    async def create_budget(self, user_id: str, draft: BudgetDraft) -> Budget:
        """
        Raises:
            NotFoundError: If a referenced category is not usable
            ValueError: If the period is inconsistent
        """
        threshold = draft.notification_threshold or self._default_threshold

        if draft.category_id is not None and draft.amount is not None:
            entries = [BudgetCategoryDraft(category_id=draft.category_id, limit=draft.amount)]
        else:
            entries = draft.categories

        categories: list[BudgetCategory] = []
        if entries:
            found = await self._expense_categories(entries, user_id)
            categories = [
                BudgetCategory(
                    category_id=entry.category_id,
                    category_name=found[entry.category_id].name,
                    limit=entry.limit,
                )
                for entry in entries
            ]
            total_limit = sum((c.limit for c in categories), Decimal("0"))
        else:
            total_limit = draft.total_limit

        budget = Budget(
            user_id=user_id,
            name=draft.name,
            description=draft.description,
            period_type=draft.period_type,
            start_date=draft.start_date,
            end_date=draft.end_date,
            categories=categories,
            total_limit=total_limit,
            notification_threshold=threshold,
        )
        await self._budgets.save_budget(budget)
        logger.info(
            "budget_created",
            budget_id=str(budget.id),
            user_id=user_id,
            categories=len(categories),
            total_limit=str(total_limit),
        )
        return budget

    async def update_budget(
        self,
        budget_id: UUID,
        user_id: str,
        changes: BudgetUpdate,
    ) -> Budget:
        """
        Apply a partial update.

        A new category list keeps the spent value of categories that stay
        and recomputes the total limit. An explicit total limit is only
        accepted for budgets without categories.

        Raises:
            NotFoundError: If the budget or a category is not usable
            BudgetError: If a total limit is set on a category budget
        """
        budget = await self.get_budget(budget_id, user_id)
        patch = changes.model_dump(exclude_unset=True, exclude={"categories"})

        if changes.categories:
            found = await self._expense_categories(changes.categories, user_id)
            previous = {entry.category_id: entry.spent for entry in budget.categories}
            patch["categories"] = [
                BudgetCategory(
                    category_id=entry.category_id,
                    category_name=found[entry.category_id].name,
                    limit=entry.limit,
                    spent=previous.get(entry.category_id, Decimal("0")),
                )
                for entry in changes.categories
            ]
            patch["total_limit"] = sum(
                (entry.limit for entry in changes.categories), Decimal("0")
            )
        elif changes.total_limit is not None and budget.categories:
            raise BudgetError(
                "The total limit of a category budget is the sum of its category limits"
            )

        updated = Budget.model_validate({**budget.model_dump(), **patch})
        await self._budgets.update_budget(updated)
        return updated

    async def delete_budget(self, budget_id: UUID, user_id: str) -> None:
        await self.get_budget(budget_id, user_id)
        await self._budgets.delete_budget(budget_id)

    async def list_budgets(
        self,
        user_id: str,
        is_active: Optional[bool] = None,
        on_date: Optional[datetime] = None,
        period_type: Optional[BudgetPeriodType] = None,
    ) -> list[Budget]:
        return await self._budgets.list_budgets(
            user_id,
            is_active=is_active,
            on_date=on_date,
            period_type=period_type,
        )

    async def get_progress(self, budget_id: UUID, user_id: str) -> BudgetProgress:
        """
        Recompute a budget from its transactions and report progress.

        Alerts from the recomputation are turned into notifications on a
        best-effort basis.
        """
        await self.get_budget(budget_id, user_id)
        progress = await self._aggregator.recompute_progress(budget_id)

        if progress.alerts:
            try:
                await self._deduper.create_from_alerts(progress.alerts, user_id)
            except Exception as e:
                logger.error(
                    "progress_notifications_failed",
                    budget_id=str(budget_id),
                    error=str(e),
                )
        return progress
