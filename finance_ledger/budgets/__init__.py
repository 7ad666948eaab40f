"""Budget tracking package."""

from finance_ledger.budgets.aggregator import (
    BudgetAggregator,
    build_progress,
    evaluate_alerts,
)
from finance_ledger.budgets.manager import BudgetError, BudgetManager

__all__ = [
    "BudgetAggregator",
    "BudgetError",
    "BudgetManager",
    "build_progress",
    "evaluate_alerts",
]
