"""
Module: backoffice_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only.  No service updates or deletes them.
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      validated by AuditorService.validate_chain().
    - seq is monotonically increasing, allocated by SequenceService.

Audit relevance:
    Every run transition, lock acquisition, journal posting and document
    state change writes one AuditEvent.  Dry runs audit their run record
    only; their domain effects are rolled back together with any audit
    events written inside item savepoints.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Run lifecycle
    RUN_SUBMITTED = "run_submitted"
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_CANCELLED = "run_cancelled"

    # Safety locks
    LOCK_ACQUIRED = "lock_acquired"
    LOCK_RELEASED = "lock_released"

    # Ledger
    JOURNAL_POSTED = "journal_posted"

    # Documents
    INVOICE_CREATED = "invoice_created"
    INVOICE_FINALIZED = "invoice_finalized"
    INVOICE_POSTED = "invoice_posted"
    PAY_RUN_TRANSITION = "pay_run_transition"
    DUNNING_SENT = "dunning_sent"
    REVENUE_RECOGNIZED = "revenue_recognized"

    # Configuration
    RULE_CREATED = "rule_created"
    SCHEDULE_BUILT = "schedule_built"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "Run", "JournalEntry", "BillingInvoice", "PayRun"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
