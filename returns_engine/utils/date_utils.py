"""Date manipulation utilities"""

from datetime import date

from dateutil.relativedelta import relativedelta


def add_months(from_date: date, months: int) -> date:
    """Shift by whole months, clamping to the last day of short months"""
    return from_date + relativedelta(months=months)


def on_day_of_month(target: date, day: int) -> date:
    """Move a date to the given day of its month (clamped to month length)"""
    return target + relativedelta(day=day)
