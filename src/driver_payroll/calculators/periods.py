"""Pay week helpers. Weeks run Monday through Sunday."""

from __future__ import annotations

import calendar
from datetime import date, timedelta

PAY_DATE_OFFSET_DAYS = 5


def week_start_for(day: date) -> date:
    """Monday of the week containing day."""
    return day - timedelta(days=day.weekday())


def week_end_for(week_start: date) -> date:
    return week_start + timedelta(days=6)


def pay_date_for(week_end: date) -> date:
    """Drivers are paid on the Friday after the week closes."""
    return week_end + timedelta(days=PAY_DATE_OFFSET_DAYS)


def next_week_start(day: date) -> date:
    """Monday of the week after the one containing day."""
    return week_start_for(day) + timedelta(days=7)


def add_months(day: date, months: int) -> date:
    """Shift by calendar months, clamping to the last day of the month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def next_occurrence(day: date, frequency: str) -> date:
    """Next charge date for a recurring deduction."""
    if frequency == "WEEKLY":
        return day + timedelta(days=7)
    if frequency == "BI_WEEKLY":
        return day + timedelta(days=14)
    if frequency == "MONTHLY":
        return add_months(day, 1)
    raise ValueError(f"Unknown frequency {frequency!r}")
