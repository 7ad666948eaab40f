"""Recurring transaction scheduling package."""

from finance_ledger.scheduling.manager import ScheduleError, ScheduleManager
from finance_ledger.scheduling.processor import ScheduledTransactionProcessor
from finance_ledger.scheduling.recurrence import RecurrenceCalculator, next_occurrence

__all__ = [
    "RecurrenceCalculator",
    "ScheduleError",
    "ScheduleManager",
    "ScheduledTransactionProcessor",
    "next_occurrence",
]
