"""Calendar arithmetic for schedule recurrence."""

import calendar
from datetime import datetime, timedelta

from src.core.models import Recurrence

__all__ = ["next_due_at", "add_month"]


def add_month(moment: datetime) -> datetime:
    """Advance by one calendar month, clamping to the last day of the month.

    Jan 31 becomes Feb 28 (or 29), never March.
    """
    month_index = moment.month  # zero-based index of the following month
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def next_due_at(due_at: datetime, recurrence: str) -> datetime | None:
    """Compute the following due time, measured from the previous one.

    Args:
        due_at: The due time that just executed (not the current time).
        recurrence: Recurrence rule value.

    Returns:
        Next due time, or None when the schedule is terminal (``once`` or
        an unrecognized rule).
    """
    if recurrence == Recurrence.DAILY.value:
        return due_at + timedelta(days=1)
    if recurrence == Recurrence.WEEKLY.value:
        return due_at + timedelta(weeks=1)
    if recurrence == Recurrence.MONTHLY.value:
        return add_month(due_at)
    return None
