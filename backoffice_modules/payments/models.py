"""
Payments domain models (``backoffice_modules.payments.models``).

Statuses and frozen value objects returned by PaymentsService.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class ApInvoiceStatus(str, Enum):
    OPEN = "OPEN"
    PAID = "PAID"


class PayRunStatus(str, Enum):
    """DRAFT -> APPROVED -> EXPORTED -> EXECUTED; DRAFT/APPROVED -> CANCELLED."""

    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    EXPORTED = "EXPORTED"
    EXECUTED = "EXECUTED"
    CANCELLED = "CANCELLED"


class PayLineStatus(str, Enum):
    SELECTED = "selected"
    PAID = "paid"
    CANCELLED = "cancelled"


class BankFileFormat(str, Enum):
    PAIN_001 = "PAIN_001"
    CSV = "CSV"


class SelectionSkipReason(str, Enum):
    LOCKED = "LOCKED"  # Invoice already in a live pay run
    NO_BANK = "NO_BANK"  # Supplier has no active bank account
    ON_HOLD = "ON_HOLD"  # Invoice flagged hold_pay
    BELOW_MIN = "BELOW_MIN"  # Pay amount under the run's minimum


@dataclass(frozen=True)
class PayRun:
    pay_run_id: UUID
    company: str
    year: int
    month: int
    currency: str
    status: PayRunStatus
    journal_entry_id: UUID | None = None


@dataclass(frozen=True)
class SelectionOutcome:
    """What selecting one invoice into a pay run did (or would do)."""

    invoice_id: UUID
    invoice_no: str
    supplier_code: str
    amount: Decimal | None = None
    currency: str | None = None
    fx_rate: Decimal | None = None
    due_date: date | None = None
    pay_line_id: UUID | None = None
    skip_reason: SelectionSkipReason | None = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    def preview(self) -> dict[str, Any]:
        return {
            "invoice_id": self.invoice_id,
            "invoice_no": self.invoice_no,
            "supplier": self.supplier_code,
            "amount": self.amount,
            "currency": self.currency,
            "fx_rate": self.fx_rate,
            "due_date": self.due_date,
            "pay_line_id": self.pay_line_id,
        }


@dataclass(frozen=True)
class ExportedFile:
    bank_file_id: UUID
    filename: str
    format: BankFileFormat
    checksum: str
    line_count: int
    total_amount: Decimal
    remittances_queued: int


@dataclass(frozen=True)
class PayRunSummary:
    pay_run_id: UUID
    status: PayRunStatus
    total_lines: int
    total_amount: Decimal
    suppliers_count: int
