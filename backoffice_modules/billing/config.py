"""
backoffice_modules.billing.config
=================================

Responsibility:
    Configuration schema for subscription billing: payment terms, the
    default presentation currency, tax rate and the GL accounts invoice
    posting uses.

Failure modes:
    - Invalid configuration values -> ``ValueError`` from ``__post_init__``.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Self

from backoffice_kernel.db.types import to_decimal, validate_currency
from backoffice_kernel.logging_config import get_logger

logger = get_logger("modules.billing.config")


@dataclass
class BillingConfig:
    """
    Configuration schema for the billing module.

    ``tax_rate`` is a fraction (0.08 is 8%).  Invoices whose product has no
    revenue account post to ``default_revenue_account``.
    """

    payment_terms_days: int = 30
    default_present_ccy: str = "USD"
    tax_rate: Decimal = Decimal("0")

    ar_account: str = "1200"
    default_revenue_account: str = "4000"
    tax_payable_account: str = "2200"

    invoice_prefix: str = "INV"
    journal_source: str = "billing.invoice"

    def __post_init__(self):
        self.tax_rate = to_decimal(self.tax_rate)
        validate_currency(self.default_present_ccy)
        if self.payment_terms_days < 0:
            raise ValueError("payment_terms_days cannot be negative")
        if not Decimal("0") <= self.tax_rate < Decimal("1"):
            raise ValueError("tax_rate must be in [0, 1)")
        for name in ("ar_account", "default_revenue_account", "tax_payable_account"):
            if not getattr(self, name):
                raise ValueError(f"{name} cannot be empty")

        logger.debug(
            "billing_config_initialized",
            extra={
                "payment_terms_days": self.payment_terms_days,
                "default_present_ccy": self.default_present_ccy,
                "tax_rate": str(self.tax_rate),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("billing_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        logger.info(
            "billing_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
