"""Tests for cron parsing and pure schedule evaluation."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from backoffice_runs.domain.schedule import (
    compute_next_run,
    matches_cron,
    parse_cron,
    should_fire,
)
from backoffice_runs.domain.types import JobSchedule, ScheduleFrequency

# 2026-02-01 is a Sunday
SUNDAY_NOON = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)


def _schedule(frequency=ScheduleFrequency.DAILY, **overrides):
    values = dict(
        schedule_id=uuid4(),
        name="nightly",
        run_type="alloc.cost_allocation",
        company="ACME",
        frequency=frequency,
    )
    values.update(overrides)
    return JobSchedule(**values)


class TestParseCron:
    def test_wildcards(self):
        spec = parse_cron("* * * * *")
        assert len(spec.minutes) == 60
        assert spec.days_of_week == frozenset(range(7))

    def test_lists_ranges_steps(self):
        spec = parse_cron("0,30 9-17 */10 1-6/2 1-5")
        assert spec.minutes == frozenset({0, 30})
        assert spec.hours == frozenset(range(9, 18))
        assert spec.days_of_month == frozenset({1, 11, 21, 31})
        assert spec.months == frozenset({1, 3, 5})
        assert spec.days_of_week == frozenset({1, 2, 3, 4, 5})

    @pytest.mark.parametrize(
        "expression",
        ["* * * *", "60 * * * *", "* 24 * * *", "* * 0 * *", "*/0 * * * *", "5-1 * * * *", "a * * * *"],
    )
    def test_rejects_malformed(self, expression):
        with pytest.raises(ValueError):
            parse_cron(expression)


class TestMatchesCron:
    def test_sunday_is_zero(self):
        assert matches_cron(parse_cron("0 12 * * 0"), SUNDAY_NOON)
        assert not matches_cron(parse_cron("0 12 * * 1"), SUNDAY_NOON)

    def test_minute_must_match(self):
        assert not matches_cron(parse_cron("5 12 * * *"), SUNDAY_NOON)


class TestShouldFire:
    def test_inactive_never_fires(self):
        assert not should_fire(_schedule(is_active=False), SUNDAY_NOON)

    def test_on_demand_never_fires(self):
        assert not should_fire(_schedule(ScheduleFrequency.ON_DEMAND), SUNDAY_NOON)

    def test_once_fires_until_run(self):
        assert should_fire(_schedule(ScheduleFrequency.ONCE), SUNDAY_NOON)
        assert not should_fire(
            _schedule(ScheduleFrequency.ONCE, last_run_at=SUNDAY_NOON), SUNDAY_NOON
        )

    def test_waits_for_next_run_at(self):
        schedule = _schedule(next_run_at=datetime(2026, 2, 2, tzinfo=timezone.utc))
        assert not should_fire(schedule, SUNDAY_NOON)
        assert should_fire(schedule, datetime(2026, 2, 2, tzinfo=timezone.utc))

    def test_naive_next_run_at_is_utc(self):
        schedule = _schedule(next_run_at=datetime(2026, 2, 1, 11, 0))
        assert should_fire(schedule, SUNDAY_NOON)

    def test_cron_must_match(self):
        assert should_fire(
            _schedule(ScheduleFrequency.CRON, cron_expression="0 12 * * *"), SUNDAY_NOON
        )
        assert not should_fire(
            _schedule(ScheduleFrequency.CRON, cron_expression="0 6 * * *"), SUNDAY_NOON
        )

    def test_invalid_cron_never_fires(self):
        assert not should_fire(
            _schedule(ScheduleFrequency.CRON, cron_expression="bad"), SUNDAY_NOON
        )


class TestComputeNextRun:
    @pytest.mark.parametrize(
        "frequency, expected",
        [
            (ScheduleFrequency.HOURLY, datetime(2026, 2, 1, 13, 0, tzinfo=timezone.utc)),
            (ScheduleFrequency.DAILY, datetime(2026, 2, 2, 12, 0, tzinfo=timezone.utc)),
            (ScheduleFrequency.WEEKLY, datetime(2026, 2, 8, 12, 0, tzinfo=timezone.utc)),
            (ScheduleFrequency.MONTHLY, datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)),
        ],
    )
    def test_intervals(self, frequency, expected):
        assert compute_next_run(frequency, SUNDAY_NOON) == expected

    def test_monthly_clamps_day(self):
        jan_31 = datetime(2026, 1, 31, 6, 0, tzinfo=timezone.utc)
        assert compute_next_run(ScheduleFrequency.MONTHLY, jan_31) == datetime(
            2026, 2, 28, 6, 0, tzinfo=timezone.utc
        )

    def test_cron_next_match(self):
        assert compute_next_run(
            ScheduleFrequency.CRON, SUNDAY_NOON, "0 6 * * 1"
        ) == datetime(2026, 2, 2, 6, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "frequency", [ScheduleFrequency.ONCE, ScheduleFrequency.ON_DEMAND]
    )
    def test_no_next_run(self, frequency):
        assert compute_next_run(frequency, SUNDAY_NOON) is None

    def test_never_run(self):
        assert compute_next_run(ScheduleFrequency.DAILY, None) is None
