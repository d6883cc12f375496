"""
Module: backoffice_engines.billing
Responsibility:
    Rate subscriptions into invoice line drafts: recurring and usage
    charges, presentation-currency conversion and per-line tax.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - All amounts are Decimal rounded through round_money.
    - Tax is computed on the converted (presentation currency) amount.
    - A draft with a zero subtotal carries no lines.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from backoffice_engines.tracer import traced_engine
from backoffice_kernel.db.types import ZERO, round_money
from backoffice_kernel.exceptions import ValidationError

ONE = Decimal("1")


class ChargeKind(str, Enum):
    RECURRING = "RECURRING"
    USAGE = "USAGE"


@dataclass(frozen=True)
class LineDraft:
    description: str
    kind: ChargeKind
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class InvoiceDraft:
    """Rated charges for one subscription in the presentation currency."""

    currency: str
    fx_rate: Decimal
    lines: tuple[LineDraft, ...]

    @property
    def subtotal(self) -> Decimal:
        return sum((line.amount for line in self.lines), ZERO)

    @property
    def tax_total(self) -> Decimal:
        return sum((line.tax_amount for line in self.lines), ZERO)

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax_total


def convert(amount: Decimal, fx_rate: Decimal) -> Decimal:
    if fx_rate <= ZERO:
        raise ValidationError("fx_rate", fx_rate, "must be positive")
    return round_money(amount * fx_rate)


def compute_tax(amount: Decimal, tax_rate: Decimal) -> Decimal:
    if tax_rate < ZERO:
        raise ValidationError("tax_rate", tax_rate, "must be non-negative")
    return round_money(amount * tax_rate)


@traced_engine("billing", "1.0", fingerprint_fields=("kind", "unit_amount", "quantity", "usage_quantity"))
def rate_subscription(
    *,
    sku: str,
    kind: ChargeKind,
    unit_amount: Decimal,
    quantity: Decimal,
    usage_quantity: Decimal = ZERO,
    fx_rate: Decimal = ONE,
    present_currency: str = "USD",
    tax_rate: Decimal = ZERO,
) -> InvoiceDraft:
    """
    Rate one subscription for a billing period.

    RECURRING products bill ``unit_amount * quantity``.  USAGE products bill
    ``unit_amount * usage_quantity`` from the period's usage rollup.
    """
    if quantity < ZERO or usage_quantity < ZERO:
        raise ValidationError("quantity", quantity, "must be non-negative")

    unit_price = round_money(unit_amount * fx_rate, 4)
    if kind == ChargeKind.RECURRING:
        billed_qty = quantity
        description = f"{sku} subscription x {quantity.normalize():f}"
    else:
        billed_qty = usage_quantity
        description = f"{sku} usage x {usage_quantity.normalize():f}"

    amount = convert(unit_amount * billed_qty, fx_rate)
    if amount == ZERO:
        return InvoiceDraft(present_currency, fx_rate, ())

    line = LineDraft(
        description=description,
        kind=kind,
        quantity=billed_qty,
        unit_price=unit_price,
        amount=amount,
        tax_amount=compute_tax(amount, tax_rate),
    )
    return InvoiceDraft(present_currency, fx_rate, (line,))
