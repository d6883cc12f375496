"""
Module: backoffice_kernel.models.run_lock
Responsibility: ORM persistence for the safety locks that make commit runs
    post at most once per scope (allocation rule per period, revenue period,
    invoice posting, AP invoice selection).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE (lock_kind, company, scope_key): a scope is locked at most once.
      Concurrent acquirers race on the constraint, not on a read.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import TrackedBase, UUIDString


class RunLock(TrackedBase):
    """A held safety lock."""

    __tablename__ = "run_locks"

    __table_args__ = (
        UniqueConstraint(
            "lock_kind", "company", "scope_key", name="uq_run_lock_scope"
        ),
        Index("idx_run_lock_run", "run_id"),
    )

    # alloc_rule | revenue_period | invoice_post | ap_invoice
    lock_kind: Mapped[str] = mapped_column(String(50), nullable=False)

    company: Mapped[str] = mapped_column(String(50), nullable=False)

    # e.g. "2026-01:OPS-RENT", "2026-01", an invoice or AP invoice id
    scope_key: Mapped[str] = mapped_column(String(200), nullable=False)

    run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<RunLock {self.lock_kind}:{self.company}:{self.scope_key}>"
