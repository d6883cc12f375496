"""
backoffice_modules.alloc.config
===============================

Responsibility:
    Configuration schema for cost allocation runs: journal currency, memo
    prefix and the journal source tag.

Failure modes:
    - Invalid configuration values -> ``ValueError`` from ``__post_init__``;
      an unknown currency -> ``InvalidCurrencyError``.
"""

from dataclasses import dataclass
from typing import Self

from backoffice_kernel.db.types import validate_currency
from backoffice_kernel.logging_config import get_logger

logger = get_logger("modules.alloc.config")


@dataclass
class AllocationConfig:
    """
    Configuration schema for the allocation module.

    Example::

        config = AllocationConfig(memo_prefix="Overhead allocation")
    """

    currency: str = "USD"
    memo_prefix: str = "Allocation"
    journal_source: str = "alloc.cost_allocation"

    # Maximum rules evaluated per run; guards against runaway rule sets
    max_rules_per_run: int = 500

    def __post_init__(self):
        validate_currency(self.currency)
        if not self.memo_prefix or not self.memo_prefix.strip():
            raise ValueError("memo_prefix cannot be empty")
        if self.max_rules_per_run <= 0:
            raise ValueError("max_rules_per_run must be positive")

        logger.debug(
            "alloc_config_initialized",
            extra={
                "currency": self.currency,
                "max_rules_per_run": self.max_rules_per_run,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("alloc_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. a YAML settings section)."""
        logger.info(
            "alloc_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
