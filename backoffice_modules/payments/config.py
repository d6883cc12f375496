"""
backoffice_modules.payments.config
==================================

Responsibility:
    Configuration schema for supplier pay runs: the GL accounts the
    execution journal uses, the default pay run currency and the default
    bank file format.

Failure modes:
    - Invalid configuration values -> ``ValueError`` from ``__post_init__``.
"""

from dataclasses import dataclass
from typing import Self

from backoffice_kernel.db.types import validate_currency
from backoffice_kernel.logging_config import get_logger

logger = get_logger("modules.payments.config")

BANK_FORMATS = ("PAIN_001", "CSV")


@dataclass
class PaymentsConfig:
    """Configuration schema for the payments module."""

    ap_account: str = "2000"
    bank_account: str = "1000"
    default_currency: str = "USD"
    default_bank_format: str = "PAIN_001"
    journal_source: str = "payments.pay_run"

    # Maximum invoices considered by one selection run
    max_invoices_per_run: int = 5000

    def __post_init__(self):
        validate_currency(self.default_currency)
        if not self.ap_account or not self.bank_account:
            raise ValueError("ap_account and bank_account are required")
        if self.ap_account == self.bank_account:
            raise ValueError("ap_account and bank_account must differ")
        if self.default_bank_format not in BANK_FORMATS:
            raise ValueError(
                f"default_bank_format must be one of {BANK_FORMATS}, "
                f"got {self.default_bank_format!r}"
            )
        if self.max_invoices_per_run <= 0:
            raise ValueError("max_invoices_per_run must be positive")

        logger.debug(
            "payments_config_initialized",
            extra={
                "ap_account": self.ap_account,
                "bank_account": self.bank_account,
                "default_currency": self.default_currency,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("payments_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        logger.info(
            "payments_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
