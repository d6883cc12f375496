"""
backoffice_modules.dunning.config
=================================

Responsibility:
    Configuration schema for dunning runs: the default throttle between
    repeats of a policy step, and the segment customers fall into when
    none is recorded.

Failure modes:
    - Invalid configuration values -> ``ValueError`` from ``__post_init__``.
"""

from dataclasses import dataclass
from typing import Self

from backoffice_kernel.logging_config import get_logger

logger = get_logger("modules.dunning.config")


@dataclass
class DunningConfig:
    """Configuration schema for the dunning module."""

    default_throttle_days: int = 3
    default_segment: str = "DEFAULT"
    sender: str = "billing@example.com"

    # Maximum (customer, bucket) groups processed by one run
    max_groups_per_run: int = 10000

    def __post_init__(self):
        if self.default_throttle_days < 0:
            raise ValueError("default_throttle_days cannot be negative")
        if not self.default_segment:
            raise ValueError("default_segment cannot be empty")
        if self.max_groups_per_run <= 0:
            raise ValueError("max_groups_per_run must be positive")

        logger.debug(
            "dunning_config_initialized",
            extra={
                "default_throttle_days": self.default_throttle_days,
                "default_segment": self.default_segment,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("dunning_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        logger.info(
            "dunning_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
