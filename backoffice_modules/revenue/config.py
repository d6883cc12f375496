"""
backoffice_modules.revenue.config
=================================

Responsibility:
    Configuration schema for revenue recognition: the journal currency,
    memo prefix and source tag, and the method used when a performance
    obligation does not name one.

Failure modes:
    - Invalid configuration values -> ``ValueError`` from ``__post_init__``.
"""

from dataclasses import dataclass
from typing import Self

from backoffice_engines.recognition import RecognitionMethod
from backoffice_kernel.db.types import validate_currency
from backoffice_kernel.logging_config import get_logger

logger = get_logger("modules.revenue.config")


@dataclass
class RevenueConfig:
    """Configuration schema for the revenue module."""

    currency: str = "USD"
    memo_prefix: str = "Revenue recognition"
    journal_source: str = "revenue.recognition"
    default_method: str = RecognitionMethod.RATABLE_MONTHLY.value

    def __post_init__(self):
        validate_currency(self.currency)
        valid = {m.value for m in RecognitionMethod}
        if self.default_method not in valid:
            raise ValueError(
                f"default_method must be one of {sorted(valid)}, got {self.default_method!r}"
            )

        logger.debug(
            "revenue_config_initialized",
            extra={"currency": self.currency, "default_method": self.default_method},
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("revenue_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        logger.info(
            "revenue_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
