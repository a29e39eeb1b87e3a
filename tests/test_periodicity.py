"""
Tests for the periodicity scheduler and the periodicity catalogue
"""

import pytest
from datetime import date

from lending_core.calendar_utils import add_months, sunday_based_weekday, week_bounds
from lending_core.errors import ConfigurationError, NotFoundError, ValidationError
from lending_core.periodicity import (
    DueDateSchedule, IntervalType, PeriodicityRule, STANDARD_PERIODICITIES,
    describe_periodicity, generate_due_dates, validate_start_date,
)

WEEKDAYS = [1, 2, 3, 4, 5]  # Monday to Friday


class TestCalendarHelpers:
    """Date arithmetic used by the scheduler"""

    def test_sunday_based_weekday(self):
        assert sunday_based_weekday(date(2024, 1, 7)) == 0  # Sunday
        assert sunday_based_weekday(date(2024, 1, 8)) == 1  # Monday
        assert sunday_based_weekday(date(2024, 1, 13)) == 6  # Saturday

    def test_add_months_clamps_and_restores_anchor(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2024, 2, 29), 1, anchor_day=31) == date(2024, 3, 31)
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_week_bounds_run_sunday_to_saturday(self):
        assert week_bounds(date(2024, 1, 10)) == (date(2024, 1, 7), date(2024, 1, 13))


class TestDayBasedSchedules:
    """DAILY and WEEKLY rules"""

    def test_daily(self):
        rule = PeriodicityRule(IntervalType.DAILY, 1)
        dates = generate_due_dates(rule, date(2024, 1, 1), 3)
        assert dates == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]

    def test_every_fifteen_days(self):
        rule = PeriodicityRule(IntervalType.DAILY, 15)
        dates = generate_due_dates(rule, date(2024, 1, 1), 3)
        assert dates == [date(2024, 1, 1), date(2024, 1, 16), date(2024, 1, 31)]

    def test_weekly_interval(self):
        rule = PeriodicityRule(IntervalType.WEEKLY, 2)
        dates = generate_due_dates(rule, date(2024, 1, 1), 3)
        assert dates == [date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 29)]

    def test_weekday_filter_skips_weekend(self):
        rule = PeriodicityRule(IntervalType.DAILY, 1, allowed_weekdays=WEEKDAYS)
        # 2024-01-05 is a Friday
        dates = generate_due_dates(rule, date(2024, 1, 5), 3)
        assert dates == [date(2024, 1, 5), date(2024, 1, 8), date(2024, 1, 9)]

    def test_weekday_filter_rejects_start_date(self):
        rule = PeriodicityRule(IntervalType.DAILY, 1, allowed_weekdays=WEEKDAYS)
        dates = generate_due_dates(rule, date(2024, 1, 6), 2)  # Saturday
        assert dates == [date(2024, 1, 8), date(2024, 1, 9)]

    def test_weekday_filter_with_multi_day_step(self):
        rule = PeriodicityRule(IntervalType.DAILY, 15, allowed_weekdays=WEEKDAYS)
        dates = generate_due_dates(rule, date(2024, 1, 1), 4)
        assert len(dates) == 4
        assert all(sunday_based_weekday(d) in WEEKDAYS for d in dates)
        assert dates == sorted(set(dates))

    def test_every_date_passes_filter(self):
        rule = PeriodicityRule(IntervalType.DAILY, 1, allowed_weekdays=[0, 6])
        dates = generate_due_dates(rule, date(2024, 1, 1), 10)
        assert all(sunday_based_weekday(d) in (0, 6) for d in dates)


class TestCalendarBasedSchedules:
    """MONTHLY and YEARLY rules"""

    def test_monthly_month_end_does_not_drift(self):
        rule = PeriodicityRule(IntervalType.MONTHLY, 1)
        dates = generate_due_dates(rule, date(2024, 1, 31), 4)
        assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]

    def test_quarterly(self):
        rule = PeriodicityRule(IntervalType.MONTHLY, 3)
        dates = generate_due_dates(rule, date(2024, 11, 10), 3)
        assert dates == [date(2024, 11, 10), date(2025, 2, 10), date(2025, 5, 10)]

    def test_yearly_leap_day(self):
        rule = PeriodicityRule(IntervalType.YEARLY, 1)
        dates = generate_due_dates(rule, date(2024, 2, 29), 3)
        assert dates == [date(2024, 2, 29), date(2025, 2, 28), date(2026, 2, 28)]

    def test_allowed_months_skip_nominal_dates(self):
        rule = PeriodicityRule(IntervalType.MONTHLY, 1, allowed_months=[1, 7])
        dates = generate_due_dates(rule, date(2024, 1, 10), 3)
        assert dates == [date(2024, 1, 10), date(2024, 7, 10), date(2025, 1, 10)]

    def test_weekday_filter_rolls_forward(self):
        rule = PeriodicityRule(IntervalType.MONTHLY, 1, allowed_weekdays=[1])  # Mondays
        dates = generate_due_dates(rule, date(2024, 1, 6), 2)
        assert dates == [date(2024, 1, 8), date(2024, 2, 12)]

    def test_impossible_configuration_fails_fast(self):
        rule = PeriodicityRule(IntervalType.MONTHLY, 1, allowed_month_days=[31], allowed_months=[2])
        with pytest.raises(ConfigurationError):
            generate_due_dates(rule, date(2024, 1, 15), 2)


class TestScheduleProperties:

    def test_schedule_is_restartable(self):
        schedule = DueDateSchedule(PeriodicityRule(IntervalType.MONTHLY, 1), date(2024, 1, 31), 6)
        assert list(schedule) == list(schedule)
        assert len(schedule) == 6

    def test_zero_count_yields_nothing(self):
        assert generate_due_dates(PeriodicityRule(IntervalType.DAILY, 1), date(2024, 1, 1), 0) == []

    def test_negative_count_rejected(self):
        with pytest.raises(ValidationError):
            DueDateSchedule(PeriodicityRule(IntervalType.DAILY, 1), date(2024, 1, 1), -1)

    @pytest.mark.parametrize("rule", [
        PeriodicityRule(IntervalType.DAILY, 0),
        PeriodicityRule(IntervalType.DAILY, 1, allowed_weekdays=[7]),
        PeriodicityRule(IntervalType.MONTHLY, 1, allowed_month_days=[32]),
        PeriodicityRule(IntervalType.MONTHLY, 1, allowed_months=[13]),
    ])
    def test_invalid_rules_rejected(self, rule):
        with pytest.raises(ConfigurationError):
            generate_due_dates(rule, date(2024, 1, 1), 1)


class TestStartDateValidation:

    def test_allowed_start_date(self):
        rule = PeriodicityRule(IntervalType.DAILY, 1, allowed_weekdays=WEEKDAYS)
        assert validate_start_date(rule, date(2024, 1, 8)) == (True, None, None)

    def test_disallowed_start_date_suggests_next(self):
        rule = PeriodicityRule(IntervalType.DAILY, 1, allowed_weekdays=WEEKDAYS)
        is_valid, suggested, message = validate_start_date(rule, date(2024, 1, 6))
        assert not is_valid
        assert suggested == date(2024, 1, 8)
        assert "2024-01-08" in message


class TestDescriptions:

    def test_labels(self):
        assert describe_periodicity(PeriodicityRule(IntervalType.DAILY, 1)) == "Daily"
        assert describe_periodicity(PeriodicityRule(IntervalType.DAILY, 15)) == "Every 15 days"
        assert describe_periodicity(PeriodicityRule(IntervalType.MONTHLY, 1)) == "Monthly"
        assert describe_periodicity(PeriodicityRule(IntervalType.DAILY, 1, allowed_weekdays=[1, 2])) == "Daily (Mon, Tue)"


class TestPeriodicityManager:
    """Operator-managed catalogue"""

    def test_create_and_get(self, system):
        manager = system.periodicity_manager
        created = manager.create_periodicity("Business days", PeriodicityRule(
            IntervalType.DAILY, 1, allowed_weekdays=WEEKDAYS))
        loaded = manager.get_periodicity(created.id)
        assert loaded.name == "Business days"
        assert loaded.rule.allowed_weekdays == WEEKDAYS
        assert loaded.description == "Daily (Mon, Tue, Wed, Thu, Fri)"

    def test_duplicate_name_rejected(self, system):
        manager = system.periodicity_manager
        manager.create_periodicity("Monthly", PeriodicityRule(IntervalType.MONTHLY, 1))
        with pytest.raises(ValidationError):
            manager.create_periodicity("Monthly", PeriodicityRule(IntervalType.MONTHLY, 1))

    def test_get_missing(self, system):
        with pytest.raises(NotFoundError):
            system.periodicity_manager.get_periodicity("missing")

    def test_seed_standard_is_idempotent(self, system):
        manager = system.periodicity_manager
        created = manager.seed_standard()
        assert len(created) == len(STANDARD_PERIODICITIES)
        assert manager.seed_standard() == []

    def test_deactivated_hidden_from_active_list(self, system):
        manager = system.periodicity_manager
        periodicity = manager.create_periodicity("Weekly", PeriodicityRule(IntervalType.WEEKLY, 1))
        manager.update_periodicity(periodicity.id, is_active=False)
        assert manager.list_periodicities() == []
        assert len(manager.list_periodicities(active_only=False)) == 1

    def test_rule_frozen_once_referenced(self, system, loan_request):
        manager = system.periodicity_manager
        periodicity = manager.create_periodicity("Monthly", PeriodicityRule(IntervalType.MONTHLY, 1))
        loan_request.periodicity_id = periodicity.id
        loan_request.periodicity_rule = None
        system.loan_manager.create_loan(loan_request)

        with pytest.raises(ValidationError):
            manager.update_periodicity(periodicity.id, rule=PeriodicityRule(IntervalType.MONTHLY, 2))

        renamed = manager.update_periodicity(periodicity.id, name="Monthly (legacy)")
        assert renamed.name == "Monthly (legacy)"
