"""
Revenue domain models (``backoffice_modules.revenue.models``).

Frozen value objects returned by RevenueService.  Schedule construction
lives in ``backoffice_engines.recognition``.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class RecognitionKind(str, Enum):
    """Which balance sheet account a recognition line debits."""

    UNBILLED_AR = "UNBILLED_AR"
    DEFERRED = "DEFERRED"


@dataclass(frozen=True)
class RevenuePolicy:
    company: str
    rev_account: str
    deferred_rev_account: str
    unbilled_ar_account: str


@dataclass(frozen=True)
class RecognitionLine:
    """One schedule's recognition for a period."""

    schedule_id: UUID
    pob_id: UUID
    contract_id: str
    period: str
    amount: Decimal
    kind: RecognitionKind
    dr_account: str
    cr_account: str

    def preview(self) -> dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "pob_id": self.pob_id,
            "contract_id": self.contract_id,
            "period": self.period,
            "amount": self.amount,
            "kind": self.kind.value,
            "dr_account": self.dr_account,
            "cr_account": self.cr_account,
        }
