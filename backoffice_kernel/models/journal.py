"""
Module: backoffice_kernel.models.journal
Responsibility: ORM persistence for the journal entries that commit runs post
    (allocations, invoices, pay runs, revenue recognition).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - idempotency_key is UNIQUE: one entry per key, ever.
    - Balanced: total debits equal total credits (checked by JournalService
      before insert; ``is_balanced`` is the read-side assertion).
    - seq is monotonic, allocated by SequenceService.

Failure modes:
    - IntegrityError on a duplicate idempotency_key.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, UUIDString


class JournalEntry(TrackedBase):
    """A posted, balanced journal entry."""

    __tablename__ = "journal_entries"

    __table_args__ = (
        Index("idx_journal_company_date", "company", "entry_date"),
        Index("idx_journal_source", "source"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    memo: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # Producing run type, e.g. "alloc.cost_allocation", "billing.post_invoice"
    source: Mapped[str] = mapped_column(String(100), nullable=False)

    source_run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    idempotency_key: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="JournalLine.line_no",
    )

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    def __repr__(self) -> str:
        return f"<JournalEntry {self.idempotency_key} seq={self.seq}>"


class JournalLine(TrackedBase):
    """One debit or credit line.  Exactly one of debit/credit is non-zero."""

    __tablename__ = "journal_lines"

    __table_args__ = (
        Index("idx_journal_line_account", "account"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    account: Mapped[str] = mapped_column(String(50), nullable=False)

    debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    cost_center: Mapped[str | None] = mapped_column(String(50), nullable=True)

    project: Mapped[str | None] = mapped_column(String(50), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")
