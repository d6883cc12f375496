"""
Revenue ORM models (``backoffice_modules.revenue.orm``).

Responsibility
--------------
Persistence for the per-company revenue account policy, performance
obligations, their per-period recognition schedules and the recognition
events each run records.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_engines.recognition import ScheduleStatus
from backoffice_kernel.db.base import TrackedBase, UUIDString
from backoffice_modules.revenue.models import RevenuePolicy


class RevPolicyModel(TrackedBase):
    """Revenue, deferred revenue and unbilled AR accounts of a company."""

    __tablename__ = "rev_policies"

    __table_args__ = (
        UniqueConstraint("company", name="uq_rev_policies_company"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    rev_account: Mapped[str] = mapped_column(String(50), nullable=False)
    deferred_rev_account: Mapped[str] = mapped_column(String(50), nullable=False)
    unbilled_ar_account: Mapped[str] = mapped_column(String(50), nullable=False)

    def to_dto(self) -> RevenuePolicy:
        return RevenuePolicy(
            company=self.company,
            rev_account=self.rev_account,
            deferred_rev_account=self.deferred_rev_account,
            unbilled_ar_account=self.unbilled_ar_account,
        )


class RevPobModel(TrackedBase):
    """A performance obligation of a contract."""

    __tablename__ = "rev_pobs"

    __table_args__ = (
        Index("idx_rev_pobs_contract", "company", "contract_id"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    contract_id: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    method: Mapped[str] = mapped_column(String(30), nullable=False)

    schedules: Mapped[list["RevScheduleModel"]] = relationship(
        back_populates="pob",
        cascade="all, delete-orphan",
    )


class RevScheduleModel(TrackedBase):
    """Planned vs. recognized revenue of one obligation in one period."""

    __tablename__ = "rev_schedules"

    __table_args__ = (
        UniqueConstraint("pob_id", "year", "month", name="uq_rev_schedules_period"),
        Index("idx_rev_schedules_period", "company", "year", "month", "status"),
    )

    pob_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rev_pobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    company: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    planned: Mapped[Decimal] = mapped_column(nullable=False)
    recognized: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ScheduleStatus.PLANNED.value,
    )

    pob: Mapped[RevPobModel] = relationship(back_populates="schedules")


class RevEventModel(TrackedBase):
    """A recognition booked by a run."""

    __tablename__ = "rev_events"

    __table_args__ = (
        Index("idx_rev_events_run", "run_id"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    pob_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("rev_pobs.id"), nullable=False,
    )
    schedule_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("rev_schedules.id"), nullable=False,
    )
    run_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    dr_account: Mapped[str] = mapped_column(String(50), nullable=False)
    cr_account: Mapped[str] = mapped_column(String(50), nullable=False)
    journal_entry_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
