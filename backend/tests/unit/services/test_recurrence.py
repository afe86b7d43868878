"""
Unit tests for recurring schedule arithmetic.

WHY: Month-end clamping and re-anchoring are easy to get subtly wrong; a
monthly invoice started on the 31st must land on Feb 29 in a leap year and
return to the 31st in March.
"""

import pytest
from datetime import date

from crm.core.exceptions import ValidationError
from crm.models.recurring_invoice import RecurringInvoiceTemplate, RecurrenceInterval
from crm.models.task import RecurringTask, TaskFrequency
from crm.services import recurring_invoice_service, recurring_task_service
from crm.services.recurrence import advance_date, is_due, is_past_end


class TestAdvanceDate:
    def test_daily(self):
        assert advance_date(date(2024, 2, 28), "daily") == date(2024, 2, 29)
        assert advance_date(date(2024, 2, 28), "daily", interval=3) == date(2024, 3, 2)

    def test_monthly_clamps_in_leap_year(self):
        assert advance_date(date(2024, 1, 31), "monthly") == date(2024, 2, 29)

    def test_monthly_clamps_in_common_year(self):
        assert advance_date(date(2023, 1, 31), "monthly") == date(2023, 2, 28)

    def test_anchor_day_returns_to_month_end(self):
        assert advance_date(date(2024, 2, 29), "monthly", day_of_month=31) == date(2024, 3, 31)

    def test_quarterly(self):
        assert advance_date(date(2024, 11, 30), "quarterly") == date(2025, 2, 28)

    def test_yearly_from_leap_day(self):
        assert advance_date(date(2024, 2, 29), "yearly") == date(2025, 2, 28)

    def test_weekly_without_days(self):
        assert advance_date(date(2024, 1, 3), "weekly", interval=2) == date(2024, 1, 17)

    def test_weekly_with_days(self):
        # 2024-01-01 is a Monday
        assert advance_date(date(2024, 1, 1), "weekly", days_of_week=[0, 3]) == date(2024, 1, 4)
        assert advance_date(date(2024, 1, 4), "weekly", days_of_week=[0, 3]) == date(2024, 1, 8)

    def test_weekly_interval_skips_weeks(self):
        assert advance_date(
            date(2024, 1, 4), "weekly", interval=2, days_of_week=[0, 3]
        ) == date(2024, 1, 15)

    def test_custom_days(self):
        assert advance_date(date(2024, 1, 1), "custom", custom_days=10) == date(2024, 1, 11)
        assert advance_date(date(2024, 1, 1), "custom") == date(2024, 1, 31)

    def test_accepts_enum_members(self):
        assert advance_date(date(2024, 1, 15), RecurrenceInterval.MONTHLY) == date(2024, 2, 15)
        assert advance_date(date(2024, 1, 15), TaskFrequency.DAILY) == date(2024, 1, 16)

    def test_zero_interval_means_one(self):
        assert advance_date(date(2024, 1, 1), "daily", interval=0) == date(2024, 1, 2)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"frequency": "hourly"},
            {"frequency": "daily", "interval": -1},
            {"frequency": "monthly", "day_of_month": 32},
            {"frequency": "weekly", "days_of_week": [7]},
            {"frequency": "custom", "custom_days": -5},
        ],
    )
    def test_invalid_schedule_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            advance_date(date(2024, 1, 1), **kwargs)

    def test_always_moves_forward(self):
        start = date(2024, 1, 31)
        for frequency in ("daily", "weekly", "monthly", "quarterly", "yearly", "custom"):
            assert advance_date(start, frequency) > start


class TestDueChecks:
    def test_is_due(self):
        assert is_due(date(2024, 1, 1), today=date(2024, 1, 1))
        assert not is_due(date(2024, 1, 2), today=date(2024, 1, 1))
        assert not is_due(None)

    def test_end_date_is_inclusive(self):
        assert not is_past_end(date(2024, 3, 31), date(2024, 3, 31))
        assert is_past_end(date(2024, 4, 1), date(2024, 3, 31))
        assert not is_past_end(date(2030, 1, 1), None)


class TestRecurringInvoiceSchedule:
    """Invoice templates stay anchored on their start date's day of month."""

    def test_month_end_sequence(self):
        template = RecurringInvoiceTemplate(
            recurrence_interval=RecurrenceInterval.MONTHLY,
            start_date=date(2024, 1, 31),
        )
        occurrences = [template.start_date]
        for _ in range(3):
            occurrences.append(
                recurring_invoice_service.next_occurrence(template, occurrences[-1])
            )

        assert occurrences == [
            date(2024, 1, 31),
            date(2024, 2, 29),
            date(2024, 3, 31),
            date(2024, 4, 30),
        ]

    def test_custom_interval(self):
        template = RecurringInvoiceTemplate(
            recurrence_interval=RecurrenceInterval.CUSTOM,
            custom_days=14,
            start_date=date(2024, 1, 1),
        )
        assert recurring_invoice_service.next_occurrence(
            template, date(2024, 1, 1)
        ) == date(2024, 1, 15)


class TestRecurringTaskSchedule:
    def _template(self, **kwargs) -> RecurringTask:
        values = {"title": "Status report", "interval": 1, "start_date": date(2024, 1, 1)}
        values.update(kwargs)
        return RecurringTask(**values)

    def test_first_occurrence_defaults_to_start(self):
        template = self._template(frequency=TaskFrequency.DAILY, start_date=date(2024, 1, 10))
        assert recurring_task_service.first_occurrence(template) == date(2024, 1, 10)

    def test_first_occurrence_on_listed_weekday(self):
        # Monday start, Friday-only schedule
        template = self._template(frequency=TaskFrequency.WEEKLY, days_of_week=[4])
        assert recurring_task_service.first_occurrence(template) == date(2024, 1, 5)

    def test_first_occurrence_day_of_month_later_this_month(self):
        template = self._template(
            frequency=TaskFrequency.MONTHLY, day_of_month=15, start_date=date(2024, 1, 10)
        )
        assert recurring_task_service.first_occurrence(template) == date(2024, 1, 15)

    def test_first_occurrence_day_of_month_already_passed(self):
        template = self._template(
            frequency=TaskFrequency.MONTHLY, day_of_month=15, start_date=date(2024, 1, 20)
        )
        assert recurring_task_service.first_occurrence(template) == date(2024, 2, 15)

    def test_first_occurrence_day_of_month_clamped(self):
        template = self._template(
            frequency=TaskFrequency.MONTHLY, day_of_month=31, start_date=date(2024, 2, 10)
        )
        assert recurring_task_service.first_occurrence(template) == date(2024, 2, 29)

    def test_monthly_task_keeps_anchor(self):
        template = self._template(frequency=TaskFrequency.MONTHLY, start_date=date(2024, 1, 31))
        feb = recurring_task_service.next_occurrence(template, date(2024, 1, 31))
        assert feb == date(2024, 2, 29)
        assert recurring_task_service.next_occurrence(template, feb) == date(2024, 3, 31)

    def test_weekly_task_uses_days(self):
        template = self._template(frequency=TaskFrequency.WEEKLY, days_of_week=[0, 2])
        assert recurring_task_service.next_occurrence(template, date(2024, 1, 1)) == date(2024, 1, 3)
