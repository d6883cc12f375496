"""Pure kernel domain types: clock and accounting periods."""

from backoffice_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from backoffice_kernel.domain.periods import Period, periods_between

__all__ = ["Clock", "DeterministicClock", "Period", "SystemClock", "periods_between"]
