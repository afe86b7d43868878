"""
Recurring schedule advancement.

WHAT: Calendar arithmetic shared by recurring invoice templates and
recurring tasks.

WHY: "Monthly" must mean one calendar month, not 30 days, and a schedule
anchored on the 31st must still land on a real date in February. Both
recurring features advance their next-due date through ``advance_date`` so
they agree on every edge case.

HOW: Month and year steps use ``dateutil.relativedelta``, which clamps to the
last valid day of the target month:

    2024-01-31 + 1 month -> 2024-02-29
    2023-01-31 + 1 month -> 2023-02-28
    2024-02-29 + 1 year  -> 2025-02-28

Passing ``day_of_month`` re-anchors every step on that day (again clamped),
so a schedule that started on the 31st returns to the 31st in long months
instead of drifting to the 28th/29th forever.

Weekdays follow Python's numbering: Monday = 0 ... Sunday = 6.
"""

from datetime import date, timedelta
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from crm.core.exceptions import ValidationError


DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
QUARTERLY = "quarterly"
YEARLY = "yearly"
CUSTOM = "custom"

DEFAULT_CUSTOM_DAYS = 30


def _value(frequency) -> str:
    # Accept both str-Enums from the models and plain strings
    return getattr(frequency, "value", frequency)


def advance_date(
    current: date,
    frequency,
    interval: int = 1,
    custom_days: Optional[int] = None,
    day_of_month: Optional[int] = None,
    days_of_week: Optional[Iterable[int]] = None,
) -> date:
    """
    Compute the occurrence that follows ``current``.

    Args:
        current: The occurrence just generated (or the schedule's start)
        frequency: daily | weekly | monthly | quarterly | yearly | custom
        interval: Positive multiplier (every ``interval`` periods)
        custom_days: Period length in days for ``custom``
        day_of_month: Monthly/quarterly/yearly anchor day (1-31)
        days_of_week: Weekly only; the weekdays the schedule fires on

    Returns:
        The next occurrence, always strictly after ``current``

    Raises:
        ValidationError: On a non-positive interval or unknown frequency
    """
    interval = interval or 1
    if interval < 1:
        raise ValidationError(message="interval must be a positive integer", field="interval")
    if day_of_month is not None and not 1 <= day_of_month <= 31:
        raise ValidationError(message="day_of_month must be between 1 and 31", field="day_of_month")

    kind = _value(frequency)

    if kind == DAILY:
        return current + timedelta(days=interval)

    if kind == WEEKLY:
        weekdays = sorted(set(days_of_week or []))
        if not weekdays:
            return current + timedelta(weeks=interval)
        if any(d < 0 or d > 6 for d in weekdays):
            raise ValidationError(
                message="days_of_week values must be between 0 (Monday) and 6 (Sunday)",
                field="days_of_week",
            )
        week_start = current - timedelta(days=current.weekday())
        later_this_week = [d for d in weekdays if d > current.weekday()]
        if later_this_week:
            return week_start + timedelta(days=later_this_week[0])
        return week_start + timedelta(weeks=interval, days=weekdays[0])

    if kind in (MONTHLY, QUARTERLY):
        months = interval * (3 if kind == QUARTERLY else 1)
        if day_of_month:
            return current + relativedelta(months=months, day=day_of_month)
        return current + relativedelta(months=months)

    if kind == YEARLY:
        if day_of_month:
            return current + relativedelta(years=interval, day=day_of_month)
        return current + relativedelta(years=interval)

    if kind == CUSTOM:
        days = custom_days or DEFAULT_CUSTOM_DAYS
        if days < 1:
            raise ValidationError(message="custom_days must be a positive integer", field="custom_days")
        return current + timedelta(days=days * interval)

    raise ValidationError(message=f"Unknown frequency: {kind}", field="frequency")


def is_due(next_due: Optional[date], today: Optional[date] = None) -> bool:
    """True when the occurrence date has been reached."""
    if next_due is None:
        return False
    return next_due <= (today or date.today())


def is_past_end(occurrence: date, end_date: Optional[date]) -> bool:
    """True when ``occurrence`` falls after an (inclusive) end date."""
    return end_date is not None and occurrence > end_date
