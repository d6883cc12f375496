"""
Back-office Kernel

Shared infrastructure for every run type:
- Hash-chained audit trail
- Monotonic sequences
- Balanced, idempotent journal posting
- Injected clock and calendar periods
- Typed exceptions and structured logging
"""

__version__ = "0.1.0"
