"""
Module: backoffice_engines.recognition
Responsibility:
    Build revenue recognition schedules for performance obligations and
    derive schedule status from planned vs. recognized amounts.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: planned amounts of a schedule sum exactly to the
      obligation amount; the rounding remainder goes to the last period.
    - One entry per calendar period.  RATABLE_DAILY weights each month by
      the number of days it contributes.

Failure modes:
    - ScheduleError when end precedes start or the amount is not positive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from backoffice_engines.tracer import traced_engine
from backoffice_kernel.db.types import ZERO, round_money
from backoffice_kernel.domain.periods import Period, periods_between
from backoffice_kernel.exceptions import ScheduleError


class RecognitionMethod(str, Enum):
    POINT_IN_TIME = "POINT_IN_TIME"
    RATABLE_DAILY = "RATABLE_DAILY"
    RATABLE_MONTHLY = "RATABLE_MONTHLY"
    USAGE = "USAGE"


class ScheduleStatus(str, Enum):
    PLANNED = "PLANNED"
    PARTIAL = "PARTIAL"
    DONE = "DONE"


@dataclass(frozen=True)
class ScheduleEntry:
    period: Period
    planned: Decimal


def _spread(amount: Decimal, weights: list[tuple[Period, int]]) -> tuple[ScheduleEntry, ...]:
    total_weight = sum(w for _, w in weights)
    entries: list[ScheduleEntry] = []
    allocated = ZERO
    last = len(weights) - 1
    for i, (period, weight) in enumerate(weights):
        if i == last:
            planned = amount - allocated
        else:
            planned = round_money(amount * weight / total_weight)
        allocated += planned
        entries.append(ScheduleEntry(period, planned))
    return tuple(entries)


def _days_in_range(period: Period, start: date, end: date) -> int:
    lo = max(period.first_day, start)
    hi = min(period.last_day, end)
    return (hi - lo).days + 1


@traced_engine("recognition", "1.0", fingerprint_fields=("method", "amount", "start", "end"))
def build_schedule(
    *,
    method: RecognitionMethod,
    amount: Decimal,
    start: date,
    end: date | None = None,
) -> tuple[ScheduleEntry, ...]:
    """
    Planned recognition per period.

    POINT_IN_TIME books everything in the start period.  USAGE schedules
    are driven by usage events and have no planned entries.
    """
    end = end or start
    if end < start:
        raise ScheduleError(f"end {end} precedes start {start}")
    if amount <= ZERO:
        raise ScheduleError(f"amount {amount} must be positive")

    amount = round_money(amount)
    match method:
        case RecognitionMethod.POINT_IN_TIME:
            return (ScheduleEntry(Period.of(start), amount),)
        case RecognitionMethod.RATABLE_MONTHLY:
            return _spread(amount, [(p, 1) for p in periods_between(start, end)])
        case RecognitionMethod.RATABLE_DAILY:
            return _spread(
                amount,
                [(p, _days_in_range(p, start, end)) for p in periods_between(start, end)],
            )
        case RecognitionMethod.USAGE:
            return ()
        case _:
            raise ScheduleError(f"unknown recognition method {method}")


def recognition_status(planned: Decimal, recognized: Decimal) -> ScheduleStatus:
    if recognized <= ZERO:
        return ScheduleStatus.PLANNED
    if recognized >= planned:
        return ScheduleStatus.DONE
    return ScheduleStatus.PARTIAL
