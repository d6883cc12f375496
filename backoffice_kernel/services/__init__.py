"""Kernel services: auditing, sequences, journal posting, locks."""

from backoffice_kernel.services.auditor_service import AuditorService, AuditTrace
from backoffice_kernel.services.journal_service import (
    JournalLineInput,
    JournalService,
    PostedJournal,
    TrialBalanceRow,
)
from backoffice_kernel.services.lock_service import LockKind, RunLockService
from backoffice_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditTrace",
    "AuditorService",
    "JournalLineInput",
    "JournalService",
    "LockKind",
    "PostedJournal",
    "RunLockService",
    "SequenceService",
    "TrialBalanceRow",
]
