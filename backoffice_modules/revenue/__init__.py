"""
Revenue module.

Performance obligations carry a recognition schedule built by
``backoffice_engines.recognition``.  A recognition run books each open
schedule row of a period and posts one journal per run, after which the
period is locked against a second commit.
"""

from backoffice_modules.revenue.config import RevenueConfig
from backoffice_modules.revenue.models import (
    RecognitionKind,
    RecognitionLine,
    RevenuePolicy,
)
from backoffice_modules.revenue.service import RevenueService

__all__ = [
    "RecognitionKind",
    "RecognitionLine",
    "RevenueConfig",
    "RevenuePolicy",
    "RevenueService",
]
