"""Tests for subscription rating."""

from decimal import Decimal

import pytest

from backoffice_engines.billing import ChargeKind, compute_tax, convert, rate_subscription
from backoffice_kernel.exceptions import ValidationError


class TestRateSubscription:
    def test_recurring_charge(self):
        draft = rate_subscription(
            sku="PRO",
            kind=ChargeKind.RECURRING,
            unit_amount=Decimal("49.00"),
            quantity=Decimal("3"),
            tax_rate=Decimal("0.20"),
        )

        assert draft.subtotal == Decimal("147.00")
        assert draft.tax_total == Decimal("29.40")
        assert draft.total == Decimal("176.40")
        assert draft.lines[0].description == "PRO subscription x 3"

    def test_usage_charge_uses_usage_quantity(self):
        draft = rate_subscription(
            sku="API",
            kind=ChargeKind.USAGE,
            unit_amount=Decimal("0.002"),
            quantity=Decimal("1"),
            usage_quantity=Decimal("125000"),
        )
        assert draft.subtotal == Decimal("250.00")
        assert draft.lines[0].kind == ChargeKind.USAGE

    def test_fx_conversion_to_presentation_currency(self):
        draft = rate_subscription(
            sku="PRO",
            kind=ChargeKind.RECURRING,
            unit_amount=Decimal("100.00"),
            quantity=Decimal("1"),
            fx_rate=Decimal("0.9215"),
            present_currency="EUR",
            tax_rate=Decimal("0.10"),
        )
        assert draft.currency == "EUR"
        assert draft.subtotal == Decimal("92.15")
        assert draft.tax_total == Decimal("9.22")

    def test_zero_usage_has_no_lines(self):
        draft = rate_subscription(
            sku="API",
            kind=ChargeKind.USAGE,
            unit_amount=Decimal("0.002"),
            quantity=Decimal("1"),
        )
        assert draft.lines == ()
        assert draft.total == Decimal("0")

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValidationError):
            rate_subscription(
                sku="PRO",
                kind=ChargeKind.RECURRING,
                unit_amount=Decimal("1"),
                quantity=Decimal("-1"),
            )


class TestConversionHelpers:
    def test_convert_rejects_non_positive_rate(self):
        with pytest.raises(ValidationError):
            convert(Decimal("10"), Decimal("0"))

    def test_tax_rejects_negative_rate(self):
        with pytest.raises(ValidationError):
            compute_tax(Decimal("10"), Decimal("-0.1"))
