"""Tests for calendar month periods."""

from datetime import date

import pytest
from hypothesis import given, strategies as st

from backoffice_kernel.domain.periods import Period, periods_between
from backoffice_kernel.exceptions import ValidationError


class TestPeriod:
    def test_key_is_zero_padded(self):
        assert Period(2026, 3).key == "2026-03"
        assert str(Period(2026, 11)) == "2026-11"

    def test_bounds(self):
        period = Period(2024, 2)
        assert period.first_day == date(2024, 2, 1)
        assert period.last_day == date(2024, 2, 29)
        assert period.days == 29

    def test_contains(self):
        period = Period(2026, 1)
        assert period.contains(date(2026, 1, 31))
        assert not period.contains(date(2026, 2, 1))

    def test_next_rolls_year(self):
        assert Period(2025, 12).next() == Period(2026, 1)

    def test_invalid_month(self):
        with pytest.raises(ValidationError):
            Period(2026, 13)

    def test_invalid_year(self):
        with pytest.raises(ValidationError):
            Period(1800, 1)

    def test_parse(self):
        assert Period.parse("2026-07") == Period(2026, 7)

    @pytest.mark.parametrize("key", ["2026", "abc-de", "2026-13", ""])
    def test_parse_rejects_bad_keys(self, key):
        with pytest.raises(ValidationError):
            Period.parse(key)

    def test_ordering(self):
        assert Period(2025, 12) < Period(2026, 1) < Period(2026, 2)


class TestPeriodsBetween:
    def test_inclusive(self):
        assert periods_between(date(2026, 1, 15), date(2026, 3, 1)) == [
            Period(2026, 1),
            Period(2026, 2),
            Period(2026, 3),
        ]

    def test_single_day(self):
        assert periods_between(date(2026, 5, 5), date(2026, 5, 5)) == [Period(2026, 5)]

    @given(
        start=st.dates(min_value=date(2000, 1, 1), max_value=date(2030, 12, 31)),
        span=st.integers(min_value=0, max_value=800),
    )
    def test_every_day_covered_exactly_once(self, start, span):
        end = date.fromordinal(start.toordinal() + span)
        periods = periods_between(start, end)

        assert periods[0].contains(start)
        assert periods[-1].contains(end)
        assert len(set(periods)) == len(periods)
