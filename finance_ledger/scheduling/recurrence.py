"""
Recurrence Calculator

Pure date arithmetic for recurring transactions. Given the current due date
of a schedule and its frequency, returns the next due date.

Rules:
- daily: +1 day
- weekly: +7 days, or the next `day_of_week` strictly after the base
  (0 = Sunday ... 6 = Saturday); a base already on that weekday moves a
  full week
- monthly / quarterly / yearly: +1 / +3 / +12 calendar months. With
  `day_of_month` set the day is clamped to the last day of the target
  month (31 in February gives 28 or 29). Without it the base day is kept,
  clamped the same way.

The time of day of the base is preserved. Nothing here reads the clock.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Optional, TypeVar, Union

from dateutil.relativedelta import relativedelta

from finance_ledger.models.schedule import Frequency


DateLike = TypeVar("DateLike", date, datetime)

# Calendar months advanced per month-based frequency
MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def sunday_based_weekday(value: Union[date, datetime]) -> int:
    """Weekday with 0 = Sunday, matching `day_of_week` on schedules."""
    return (value.weekday() + 1) % 7


class RecurrenceCalculator:
    """Computes next occurrences for the fixed set of frequencies."""

    @staticmethod
    def next_date(
        base: DateLike,
        frequency: Frequency,
        day_of_month: Optional[int] = None,
        day_of_week: Optional[int] = None,
    ) -> DateLike:
        """
        Next occurrence strictly after `base`.

        Args:
            base: Current due date (date or datetime)
            frequency: Recurrence frequency
            day_of_month: Anchor day (1-31) for month-based frequencies
            day_of_week: Anchor weekday (0 = Sunday) for weekly schedules

        Raises:
            ValueError: If an anchor is out of range
        """
        frequency = Frequency(frequency)

        if frequency == Frequency.DAILY:
            return base + timedelta(days=1)

        if frequency == Frequency.WEEKLY:
            if day_of_week is None:
                return base + timedelta(days=7)
            if not 0 <= day_of_week <= 6:
                raise ValueError(f"day_of_week must be 0-6, got {day_of_week}")
            days_ahead = (day_of_week - sunday_based_weekday(base) + 7) % 7
            return base + timedelta(days=days_ahead or 7)

        target = base + relativedelta(months=MONTH_STEPS[frequency])
        if day_of_month is None:
            return target
        if not 1 <= day_of_month <= 31:
            raise ValueError(f"day_of_month must be 1-31, got {day_of_month}")
        last_day = calendar.monthrange(target.year, target.month)[1]
        return target.replace(day=min(day_of_month, last_day))


def next_occurrence(
    base: DateLike,
    frequency: Frequency,
    day_of_month: Optional[int] = None,
    day_of_week: Optional[int] = None,
) -> DateLike:
    """Shortcut for `RecurrenceCalculator.next_date`."""
    return RecurrenceCalculator.next_date(base, frequency, day_of_month, day_of_week)
