"""
Cost allocation module.

Rules spread the balance of a source account (optionally narrowed by cost
center pattern and project) onto target cost centers or projects, by fixed
percent, by driver share, or at a rate per driver unit.  Runs post one
journal per rule and lock the rule for the period.
"""

from backoffice_modules.alloc.config import AllocationConfig
from backoffice_modules.alloc.models import RuleOutcome, RuleSkipReason
from backoffice_modules.alloc.service import AllocationService

__all__ = [
    "AllocationConfig",
    "AllocationService",
    "RuleOutcome",
    "RuleSkipReason",
]
