"""
Dunning module.

Dunning runs age open receivables into (customer, bucket) groups and walk
each group's policy steps, sending a rendered reminder for every step
that is neither throttled nor waiting.
"""

from backoffice_modules.dunning.config import DunningConfig
from backoffice_modules.dunning.models import (
    DunningChannel,
    DunningSkipReason,
    GroupOutcome,
    PolicyStep,
    StepOutcome,
)
from backoffice_modules.dunning.service import DunningService

__all__ = [
    "DunningChannel",
    "DunningConfig",
    "DunningService",
    "DunningSkipReason",
    "GroupOutcome",
    "PolicyStep",
    "StepOutcome",
]
