"""
Schedule Generator Module

Produces the ordered installment due dates of a contract from its start
date, cadence and day-skip rules.
"""

from datetime import date, timedelta
from typing import List
from enum import Enum
import calendar

from .contracts import PaymentType
from .holidays import is_holiday


class Cadence(Enum):
    """Spacing between consecutive due dates"""
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    DAILY = "daily"


# Fixed day steps; monthly uses calendar months instead
CADENCE_DAYS = {
    Cadence.WEEKLY: 7,
    Cadence.BIWEEKLY: 15,
    Cadence.DAILY: 1,
}

PAYMENT_TYPE_CADENCE = {
    PaymentType.SINGLE: Cadence.MONTHLY,
    PaymentType.INSTALLMENT: Cadence.MONTHLY,
    PaymentType.WEEKLY: Cadence.WEEKLY,
    PaymentType.BIWEEKLY: Cadence.BIWEEKLY,
    PaymentType.DAILY: Cadence.DAILY,
}

# Guards the skip loop against a rule set that rejects every day
MAX_SKIP_DAYS = 31


def cadence_for(payment_type: PaymentType) -> Cadence:
    """Cadence implied by a contract's payment type"""
    return PAYMENT_TYPE_CADENCE[payment_type]


def add_months(start_date: date, months: int) -> date:
    """Add calendar months to a date, clamping to the last day of the month"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def is_skipped(day: date, skip_saturday: bool = False, skip_sunday: bool = False,
               skip_holidays: bool = False) -> bool:
    """Check if a due date may not fall on ``day``"""
    weekday = day.weekday()
    if skip_saturday and weekday == calendar.SATURDAY:
        return True
    if skip_sunday and weekday == calendar.SUNDAY:
        return True
    return skip_holidays and is_holiday(day)


def advance_past_skipped(day: date, skip_saturday: bool = False, skip_sunday: bool = False,
                         skip_holidays: bool = False) -> date:
    """Move ``day`` forward until it lands on an allowed day"""
    for _ in range(MAX_SKIP_DAYS):
        if not is_skipped(day, skip_saturday, skip_sunday, skip_holidays):
            return day
        day += timedelta(days=1)
    raise ValueError("Skip rules leave no valid due date")


def step_from(day: date, cadence: Cadence, steps: int = 1) -> date:
    """The date ``steps`` cadence periods after ``day``"""
    if cadence == Cadence.MONTHLY:
        return add_months(day, steps)
    return day + timedelta(days=CADENCE_DAYS[cadence] * steps)


def generate_schedule(
    start_date: date,
    count: int,
    cadence: Cadence,
    skip_saturday: bool = False,
    skip_sunday: bool = False,
    skip_holidays: bool = False
) -> List[date]:
    """
    Generate ordered due dates.

    Args:
        start_date: First due date candidate
        count: Number of due dates to produce
        cadence: Spacing between due dates
        skip_saturday: Never fall due on a Saturday
        skip_sunday: Never fall due on a Sunday
        skip_holidays: Never fall due on a national holiday

    Returns:
        Exactly ``count`` dates in ascending order

    Monthly dates are computed from the start date with calendar months, so
    a 31st start keeps returning to the month end instead of drifting. Daily
    schedules walk day by day and simply skip excluded days. Weekly and
    biweekly occurrences are each pushed past excluded days on their own,
    without shifting the occurrences that follow.
    """
    count = max(int(count), 0)
    skips = (skip_saturday, skip_sunday, skip_holidays)
    dates: List[date] = []

    if cadence == Cadence.DAILY:
        candidate = start_date
        while len(dates) < count:
            if not is_skipped(candidate, *skips):
                dates.append(candidate)
            candidate += timedelta(days=1)
        return dates

    for occurrence in range(count):
        candidate = step_from(start_date, cadence, occurrence)
        dates.append(advance_past_skipped(candidate, *skips))
    return dates


def extend_schedule(
    existing: List[date],
    extra_count: int,
    cadence: Cadence,
    skip_saturday: bool = False,
    skip_sunday: bool = False,
    skip_holidays: bool = False
) -> List[date]:
    """Due dates for ``extra_count`` more installments after the last existing one"""
    if extra_count <= 0:
        return []
    if not existing:
        raise ValueError("Cannot extend an empty schedule")
    start = step_from(existing[-1], cadence)
    return generate_schedule(start, extra_count, cadence, skip_saturday, skip_sunday, skip_holidays)
