"""Monthly payout schedule generation for accepted investments"""

from datetime import date
from typing import List

from returns_engine.domain.exceptions import ValidationError
from returns_engine.domain.models import ScheduledPayout
from returns_engine.utils.date_utils import add_months, on_day_of_month


def build_payout_schedule(
    started_on: date,
    month_duration: int,
    payout_day: int = 25,
    today: date | None = None,
) -> List[ScheduledPayout]:
    """
    Generate one payout slot per month of the investment.

    Requirements:
    - Month i is due on payout_day of the i-th month after started_on
    - If the first due date has already passed, the schedule is anchored on
      today instead, so month 1 falls on payout_day of next month
    - Due dates are fixed here; amounts are computed when the payout runs

    Example:
        started 2024-01-10, 3 months, day 25
        → 2024-02-25, 2024-03-25, 2024-04-25
    """
    if month_duration < 1:
        raise ValidationError("month_duration must be at least 1")
    if not 1 <= payout_day <= 28:
        raise ValidationError("payout_day must be between 1 and 28")

    if today is None:
        today = date.today()

    anchor = started_on
    if on_day_of_month(add_months(anchor, 1), payout_day) < today:
        anchor = today

    return [
        ScheduledPayout(
            month_no=month_no,
            due_date=on_day_of_month(add_months(anchor, month_no), payout_day),
        )
        for month_no in range(1, month_duration + 1)
    ]
