"""
Budget Aggregator

Keeps budget spend totals in step with the expense stream.

Two paths share one matching rule (`Budget.tracks`) and one alert rule
(`evaluate_alerts`):
- incremental: `apply_transaction_delta` adds a signed amount to every
  matching budget when a transaction is created, edited or deleted
- full: `recompute_progress` rebuilds one budget from all expense
  transactions in its period and is the source of truth

With no concurrent writers the two agree. Under interleaved writes the
incremental totals can drift; the next progress query repairs them.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from finance_ledger.audit import AuditLogger
from finance_ledger.models.budget import (
    AlertLevel,
    AlertScope,
    Budget,
    BudgetAlert,
    BudgetProgress,
    CategoryProgress,
    TotalProgress,
    spend_percentage,
)
from finance_ledger.models.ledger import Transaction, TransactionType
from finance_ledger.services.storage import (
    BudgetStorageInterface,
    NotFoundError,
    TransactionStorageInterface,
)


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


def _add_spend(current: Decimal, delta: Decimal) -> Decimal:
    # Reversals never drive spend below zero
    return max(ZERO, current + delta)


def accumulate(budget: Budget, category_id: Optional[UUID], delta: Decimal) -> None:
    """Add `delta` to the budget total and to the matching category entry."""
    budget.total_spent = _add_spend(budget.total_spent, delta)
    entry = budget.find_category(category_id)
    if entry is not None:
        entry.spent = _add_spend(entry.spent, delta)


def _level_for(percentage: int, threshold: int) -> Optional[AlertLevel]:
    if percentage >= 100:
        return AlertLevel.EXCEEDED
    if percentage >= threshold:
        return AlertLevel.WARNING
    return None


def evaluate_alerts(budget: Budget) -> list[BudgetAlert]:
    """
    Threshold alerts for a budget's current spend.

    One alert per category at or above the threshold (exceeded at 100%),
    then the same two tiers once for the total.
    """
    alerts = []
    threshold = budget.notification_threshold

    for entry in budget.categories:
        percentage = spend_percentage(entry.spent, entry.limit)
        level = _level_for(percentage, threshold)
        if level is None:
            continue
        name = entry.category_name or str(entry.category_id)
        if level == AlertLevel.EXCEEDED:
            message = (
                f'Category "{name}" in budget "{budget.name}" has exceeded '
                f"its limit of {entry.limit}"
            )
        else:
            message = (
                f'Category "{name}" in budget "{budget.name}" has reached '
                f"{percentage}% of its limit"
            )
        alerts.append(
            BudgetAlert(
                budget_id=budget.id,
                budget_name=budget.name,
                scope=AlertScope.CATEGORY,
                level=level,
                category_id=entry.category_id,
                category_name=entry.category_name,
                limit=entry.limit,
                spent=entry.spent,
                percentage=percentage,
                message=message,
            )
        )

    percentage = spend_percentage(budget.total_spent, budget.total_limit)
    level = _level_for(percentage, threshold)
    if level is not None:
        if level == AlertLevel.EXCEEDED:
            message = f'Total budget "{budget.name}" has exceeded its limit of {budget.total_limit}'
        else:
            message = f'Total budget "{budget.name}" has reached {percentage}% of its limit'
        alerts.append(
            BudgetAlert(
                budget_id=budget.id,
                budget_name=budget.name,
                scope=AlertScope.TOTAL,
                level=level,
                limit=budget.total_limit,
                spent=budget.total_spent,
                percentage=percentage,
                message=message,
            )
        )

    return alerts


def build_progress(budget: Budget) -> BudgetProgress:
    """Progress view of a budget as it currently stands."""
    category_progress = [
        CategoryProgress(
            category_id=entry.category_id,
            category_name=entry.category_name,
            limit=entry.limit,
            spent=entry.spent,
            remaining=max(ZERO, entry.limit - entry.spent),
            percentage=spend_percentage(entry.spent, entry.limit),
        )
        for entry in budget.categories
    ]
    total_progress = TotalProgress(
        limit=budget.total_limit,
        spent=budget.total_spent,
        remaining=max(ZERO, budget.total_limit - budget.total_spent),
        percentage=spend_percentage(budget.total_spent, budget.total_limit),
    )
    return BudgetProgress(
        budget=budget,
        category_progress=category_progress,
        total_progress=total_progress,
        alerts=evaluate_alerts(budget),
    )


class BudgetAggregator:
    """
    Maintains per-budget spend from transaction events.

    Usage:
        aggregator = BudgetAggregator(storage.budgets, storage.transactions)
        alerts = await aggregator.apply_transaction_delta(tx, tx.amount)
        progress = await aggregator.recompute_progress(budget_id)
    """

    def __init__(
        self,
        budgets: BudgetStorageInterface,
        transactions: TransactionStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._budgets = budgets
        self._transactions = transactions
        self._audit = audit_logger or AuditLogger()

    async def apply_transaction_delta(
        self,
        transaction: Transaction,
        delta: Decimal,
    ) -> list[BudgetAlert]:
        """
        Add `delta` to every active budget the expense falls into.

        Pass the negated original amount to reverse an edit or delete.
        Non-expense transactions are ignored. A failure on one budget is
        logged and does not stop the others.

        Returns:
            Alerts raised by the budgets after the update
        """
        if transaction.type != TransactionType.EXPENSE or delta == 0:
            return []

        budgets = await self._budgets.find_active_for_owner_in_period(
            transaction.user_id,
            transaction.date,
            transaction.category_id,
        )

        alerts: list[BudgetAlert] = []
        for budget in budgets:
            try:
                accumulate(budget, transaction.category_id, delta)
                await self._budgets.update_budget(budget)
            except Exception as e:
                logger.error(
                    "budget_delta_failed",
                    budget_id=str(budget.id),
                    transaction_id=str(transaction.id),
                    error=str(e),
                )
                continue

            raised = evaluate_alerts(budget)
            for alert in raised:
                await self._audit.log_budget_alert(budget.user_id, alert)
            alerts.extend(raised)

        logger.debug(
            "budget_delta_applied",
            transaction_id=str(transaction.id),
            delta=str(delta),
            budgets=len(budgets),
            alerts=len(alerts),
        )
        return alerts

    async def recompute_progress(self, budget_id: UUID) -> BudgetProgress:
        """
        Rebuild a budget's spend from every expense in its period.

        Raises:
            NotFoundError: If the budget doesn't exist
        """
        budget = await self._budgets.get_budget(budget_id)
        if budget is None:
            raise NotFoundError(f"Budget not found: {budget_id}")

        budget.total_spent = ZERO
        for entry in budget.categories:
            entry.spent = ZERO

        expenses = await self._transactions.list_transactions(
            user_id=budget.user_id,
            transaction_type=TransactionType.EXPENSE,
            date_from=budget.start_date,
            date_to=budget.end_date,
        )
        counted = 0
        for transaction in expenses:
            if not budget.tracks(transaction.category_id):
                continue
            accumulate(budget, transaction.category_id, transaction.amount)
            counted += 1

        await self._budgets.update_budget(budget)
        await self._audit.log_budget_recomputed(
            budget_id=budget.id,
            user_id=budget.user_id,
            total_spent=budget.total_spent,
            transaction_count=counted,
        )
        return build_progress(budget)
