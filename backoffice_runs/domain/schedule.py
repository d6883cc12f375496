"""
When a stored schedule is due, and when it is due next.

Everything here is pure: the scheduler passes the current time in and
persists whatever ``compute_next_run`` returns.  Cron expressions use the
classic five fields with Sunday as weekday 0.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from backoffice_runs.domain.types import JobSchedule, ScheduleFrequency


# =============================================================================
# Cron expressions: minute hour day-of-month month day-of-week
# =============================================================================

# (attribute, lowest, highest) in expression order.
_CRON_FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minutes", 0, 59),
    ("hours", 0, 23),
    ("days_of_month", 1, 31),
    ("months", 1, 12),
    ("days_of_week", 0, 6),
)


@dataclass(frozen=True)
class CronSpec:
    """Allowed values per field.  ``days_of_week`` counts from Sunday = 0."""

    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]


def _cron_values(text: str, low: int, high: int) -> frozenset[int]:
    """Expand ``*``, ``N``, ``N-M``, ``*/S``, ``N-M/S`` and comma lists."""
    values: set[int] = set()
    for element in text.split(","):
        base, _, step_text = element.strip().partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"Cron step must be positive in '{text}'")

        if base == "*":
            first, last = low, high
        else:
            first_text, dash, last_text = base.partition("-")
            first = int(first_text)
            # "N/S" runs from N to the top of the field
            last = int(last_text) if dash else (high if step_text else first)
        if not low <= first <= last <= high:
            raise ValueError(f"Cron element '{element}' outside [{low}, {high}]")
        values.update(range(first, last + 1, step))
    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a five-field cron expression; ValueError when malformed."""
    parts = expression.split()
    if len(parts) != len(_CRON_FIELDS):
        raise ValueError(f"Cron expression needs 5 fields: '{expression}'")
    return CronSpec(
        **{
            name: _cron_values(part, low, high)
            for part, (name, low, high) in zip(parts, _CRON_FIELDS)
        }
    )


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    sunday_based_weekday = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and sunday_based_weekday in spec.days_of_week
    )


def _next_cron_match(spec: CronSpec, after: datetime) -> datetime:
    """First whole minute after ``after`` that matches; searches one year ahead."""
    candidate = after.replace(second=0, microsecond=0)
    horizon = candidate + timedelta(days=366)
    while candidate < horizon:
        candidate += timedelta(minutes=1)
        if matches_cron(spec, candidate):
            return candidate
    raise ValueError(f"No cron match within 366 days after {after}")


# =============================================================================
# Schedule evaluation (pure)
# =============================================================================


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _add_month(value: datetime) -> datetime:
    year, month = (value.year + 1, 1) if value.month == 12 else (value.year, value.month + 1)
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def should_fire(schedule: JobSchedule, as_of: datetime) -> bool:
    """Whether ``schedule`` is due at ``as_of``.

    Rules:
        - Inactive and ON_DEMAND schedules never fire.
        - ONCE fires only if it has never run.
        - Otherwise it fires once ``as_of >= next_run_at`` (or immediately
          when ``next_run_at`` is unset), and when a cron expression is
          set, ``as_of`` must also match it.
    """
    if not schedule.is_active:
        return False

    if schedule.frequency == ScheduleFrequency.ON_DEMAND:
        return False

    if schedule.frequency == ScheduleFrequency.ONCE:
        return schedule.last_run_at is None

    if schedule.next_run_at is not None and _as_utc(as_of) < _as_utc(schedule.next_run_at):
        return False

    if schedule.cron_expression:
        try:
            spec = parse_cron(schedule.cron_expression)
        except ValueError:
            return False
        if not matches_cron(spec, as_of):
            return False

    return True


def compute_next_run(
    frequency: ScheduleFrequency,
    last_run_at: datetime | None,
    cron_expression: str | None = None,
) -> datetime | None:
    """Next due time after ``last_run_at``, or None for ONCE / ON_DEMAND."""
    if frequency in (ScheduleFrequency.ONCE, ScheduleFrequency.ON_DEMAND):
        return None

    if last_run_at is None:
        return None

    if cron_expression:
        return _next_cron_match(parse_cron(cron_expression), last_run_at)

    if frequency == ScheduleFrequency.MONTHLY:
        return _add_month(last_run_at)

    delta = {
        ScheduleFrequency.HOURLY: timedelta(hours=1),
        ScheduleFrequency.DAILY: timedelta(days=1),
        ScheduleFrequency.WEEKLY: timedelta(weeks=1),
    }.get(frequency)
    if delta is None:
        return None

    return last_run_at + delta
