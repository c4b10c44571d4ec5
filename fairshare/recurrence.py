"""
Recurrence Scheduler

Computes the advisory next date of a recurring expense. Nothing
materializes future expenses; the date is stored for display only.
"""

from datetime import date
from typing import Union

from dateutil.relativedelta import relativedelta

from fairshare.models.expense import RecurrenceInterval


_STEPS = {
    RecurrenceInterval.DAILY: relativedelta(days=1),
    RecurrenceInterval.WEEKLY: relativedelta(weeks=1),
    RecurrenceInterval.MONTHLY: relativedelta(months=1),
    RecurrenceInterval.YEARLY: relativedelta(years=1),
}


def next_occurrence(expense_date: date, interval: Union[RecurrenceInterval, str]) -> date:
    """
    Advance a date by exactly one recurrence unit.

    Month and year steps clamp to the end of the target month, so
    Jan 31 -> Feb 28 (29 in leap years) and Feb 29 -> Feb 28.

    Raises:
        ValueError: If the interval is not a known recurrence interval
    """
    step = _STEPS[RecurrenceInterval(interval)]
    return expense_date + step
