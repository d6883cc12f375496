"""
Subscription billing module.

Invoice runs rate every subscription whose bill anchor falls in the period
and store DRAFT invoices.  Invoices are then finalized and posted to the
GL one at a time.
"""

from backoffice_modules.billing.config import BillingConfig
from backoffice_modules.billing.models import (
    BillingOutcome,
    BillingSkipReason,
    Invoice,
    InvoiceStatus,
    SubscriptionStatus,
)
from backoffice_modules.billing.service import BillingService

__all__ = [
    "BillingConfig",
    "BillingOutcome",
    "BillingService",
    "BillingSkipReason",
    "Invoice",
    "InvoiceStatus",
    "SubscriptionStatus",
]
