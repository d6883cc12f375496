"""
Allocation domain models (``backoffice_modules.alloc.models``).

Frozen value objects returned by AllocationService.  The rule, driver and
line shapes themselves are the engine dataclasses in
``backoffice_engines.allocation``; this module only adds the per-rule
run outcome.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from backoffice_engines.allocation import AllocationLine
from backoffice_kernel.db.types import ZERO


class RuleSkipReason(str, Enum):
    RULE_LOCKED = "RULE_LOCKED"  # Already posted for the period
    EMPTY_POOL = "EMPTY_POOL"  # Source pool <= 0
    NO_DRIVERS = "NO_DRIVERS"  # Pool > 0 but no driver rows to spread it on


@dataclass(frozen=True)
class RuleOutcome:
    """What allocating one rule for one period did (or would do)."""

    rule_code: str
    rule_name: str
    period: str
    pool: Decimal = ZERO
    lines: tuple[AllocationLine, ...] = field(default_factory=tuple)
    skip_reason: RuleSkipReason | None = None
    journal_entry_id: UUID | None = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), ZERO)

    def preview(self) -> dict[str, Any]:
        """JSON-ready item data: the lines a dry run shows and a commit run posts."""
        return {
            "rule_code": self.rule_code,
            "period": self.period,
            "pool": self.pool,
            "total": self.total,
            "journal_entry_id": self.journal_entry_id,
            "lines": [
                {
                    "target": line.target_label,
                    "cost_center": line.target_cost_center,
                    "project": line.target_project,
                    "amount": line.amount,
                    "note": line.note,
                }
                for line in self.lines
            ],
        }
