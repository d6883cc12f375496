"""
Injectable time source.

Run timestamps, journal entry times, audit events, dunning throttles and
scheduler decisions all read the time from a ``Clock`` handed in by the
caller.  Production wires ``SystemClock``; tests wire ``DeterministicClock``
and move it explicitly, which keeps previews and replays reproducible.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

_DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware."""

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def today(self) -> date:
        """UTC calendar date.  Dunning ``as_of`` and aging default to this."""
        return self.now_utc().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock; time only moves through ``advance``/``tick``/``set_time``."""

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or _DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        self.advance()
        return self._current
