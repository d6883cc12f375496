"""
Supplier payments module.

Selection runs fill a DRAFT pay run with open AP invoices.  The pay run is
then approved, exported as a bank file and executed, which posts the
payment journal.
"""

from backoffice_modules.payments.config import PaymentsConfig
from backoffice_modules.payments.models import (
    BankFileFormat,
    ExportedFile,
    PayRun,
    PayRunStatus,
    PayRunSummary,
    SelectionOutcome,
    SelectionSkipReason,
)
from backoffice_modules.payments.service import PaymentsService

__all__ = [
    "BankFileFormat",
    "ExportedFile",
    "PayRun",
    "PayRunStatus",
    "PayRunSummary",
    "PaymentsConfig",
    "PaymentsService",
    "SelectionOutcome",
    "SelectionSkipReason",
]
