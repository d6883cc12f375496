"""
Billing domain models (``backoffice_modules.billing.models``).

Frozen value objects returned by BillingService.  Rating itself lives in
``backoffice_engines.billing``.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from backoffice_engines.billing import InvoiceDraft


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(str, Enum):
    """DRAFT -> FINAL -> POSTED.  VOID is terminal."""

    DRAFT = "DRAFT"
    FINAL = "FINAL"
    POSTED = "POSTED"
    VOID = "VOID"


class BillingSkipReason(str, Enum):
    ALREADY_BILLED = "ALREADY_BILLED"
    NOTHING_TO_BILL = "NOTHING_TO_BILL"


@dataclass(frozen=True)
class Subscription:
    subscription_id: UUID
    company: str
    customer_id: str
    sku: str
    quantity: Decimal
    status: SubscriptionStatus
    bill_anchor: date
    price_currency: str


@dataclass(frozen=True)
class InvoiceLine:
    line_no: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    tax_amount: Decimal
    revenue_account: str


@dataclass(frozen=True)
class Invoice:
    invoice_id: UUID
    invoice_no: str
    company: str
    customer_id: str
    subscription_id: UUID
    period_start: date
    period_end: date
    issue_date: date
    due_date: date
    currency: str
    fx_rate: Decimal
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal
    status: InvoiceStatus
    lines: tuple[InvoiceLine, ...] = field(default_factory=tuple)
    journal_entry_id: UUID | None = None


@dataclass(frozen=True)
class BillingOutcome:
    """What billing one subscription for one period did (or would do)."""

    subscription_id: UUID
    customer_id: str
    draft: InvoiceDraft | None = None
    invoice_id: UUID | None = None
    invoice_no: str | None = None
    due_date: date | None = None
    skip_reason: BillingSkipReason | None = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    def preview(self) -> dict[str, Any]:
        assert self.draft is not None
        return {
            "subscription_id": self.subscription_id,
            "customer_id": self.customer_id,
            "invoice_id": self.invoice_id,
            "invoice_no": self.invoice_no,
            "currency": self.draft.currency,
            "fx_rate": self.draft.fx_rate,
            "subtotal": self.draft.subtotal,
            "tax_total": self.draft.tax_total,
            "total": self.draft.total,
            "due_date": self.due_date,
            "lines": [
                {
                    "description": line.description,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "amount": line.amount,
                    "tax_amount": line.tax_amount,
                }
                for line in self.draft.lines
            ],
        }
