"""
Settings schema (``backoffice_config.settings``).

Responsibility
--------------
Frozen container for everything a deployment configures: the database
connection, the log level and one config object per module.  Module
configs keep their own validation (``__post_init__``); this module only
groups them.

Architecture position
---------------------
**Config layer**.  Imports module config dataclasses; nothing in the
kernel imports from here.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from backoffice_modules.alloc.config import AllocationConfig
from backoffice_modules.billing.config import BillingConfig
from backoffice_modules.dunning.config import DunningConfig
from backoffice_modules.payments.config import PaymentsConfig
from backoffice_modules.revenue.config import RevenueConfig

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 20

    def __post_init__(self):
        if not self.url:
            raise ValueError("database url cannot be empty")
        if self.pool_size <= 0:
            raise ValueError("pool_size must be positive")


@dataclass(frozen=True)
class BackofficeSettings:
    """Loaded deployment settings."""

    alloc: AllocationConfig = field(default_factory=AllocationConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    payments: PaymentsConfig = field(default_factory=PaymentsConfig)
    dunning: DunningConfig = field(default_factory=DunningConfig)
    revenue: RevenueConfig = field(default_factory=RevenueConfig)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    log_level: str = "INFO"
    checksum: str | None = None

    def __post_init__(self):
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")
