"""Kernel ORM models: audit chain, journal, safety locks."""

from backoffice_kernel.models.audit_event import AuditAction, AuditEvent
from backoffice_kernel.models.journal import JournalEntry, JournalLine
from backoffice_kernel.models.run_lock import RunLock

__all__ = [
    "AuditAction",
    "AuditEvent",
    "JournalEntry",
    "JournalLine",
    "RunLock",
]
