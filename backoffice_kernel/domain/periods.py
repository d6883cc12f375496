"""
Period -- calendar month accounting period.

Every run is scoped to a company and, for allocation, payments and revenue,
to one calendar month.  Locks and idempotency keys use ``Period.key``
("YYYY-MM") as their period component.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date

from backoffice_kernel.exceptions import ValidationError


@dataclass(frozen=True, order=True)
class Period:
    """A calendar month.  Ordering follows (year, month)."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValidationError("month", self.month, "must be between 1 and 12")
        if not 1900 <= self.year <= 9999:
            raise ValidationError("year", self.year, "must be between 1900 and 9999")

    @classmethod
    def of(cls, day: date) -> Period:
        return cls(day.year, day.month)

    @classmethod
    def parse(cls, key: str) -> Period:
        """Parse a ``YYYY-MM`` key."""
        try:
            year_str, month_str = key.split("-", 1)
            return cls(int(year_str), int(month_str))
        except ValueError as exc:
            raise ValidationError("period", key, "expected YYYY-MM") from exc

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def days(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    def contains(self, day: date) -> bool:
        return self.first_day <= day <= self.last_day

    def next(self) -> Period:
        if self.month == 12:
            return Period(self.year + 1, 1)
        return Period(self.year, self.month + 1)

    def previous(self) -> Period:
        if self.month == 1:
            return Period(self.year - 1, 12)
        return Period(self.year, self.month - 1)

    def __str__(self) -> str:
        return self.key


def periods_between(start: date, end: date) -> list[Period]:
    """Inclusive list of periods touched by ``[start, end]``."""
    periods: list[Period] = []
    current = Period.of(start)
    last = Period.of(end)
    while current <= last:
        periods.append(current)
        current = current.next()
    return periods
