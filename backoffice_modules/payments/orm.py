"""
Payments ORM models (``backoffice_modules.payments.orm``).

Responsibility
--------------
Persistence for suppliers, AP invoices, pay runs with their lines, bank
file profiles, exported bank files, remittance advices and the FX rates
used to pay foreign-currency invoices.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, UUIDString
from backoffice_modules.payments.models import (
    ApInvoiceStatus,
    PayLineStatus,
    PayRun,
    PayRunStatus,
)


class ApSupplierModel(TrackedBase):
    """A supplier.  Only suppliers with an active bank account can be paid."""

    __tablename__ = "ap_suppliers"

    __table_args__ = (
        UniqueConstraint("company", "supplier_code", name="uq_ap_suppliers_code"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    iban: Mapped[str | None] = mapped_column(String(34), nullable=True)
    bic: Mapped[str | None] = mapped_column(String(11), nullable=True)
    bank_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def has_bank(self) -> bool:
        return bool(self.bank_active and self.iban)


class ApInvoiceModel(TrackedBase):
    """A supplier invoice awaiting payment."""

    __tablename__ = "ap_invoices"

    __table_args__ = (
        UniqueConstraint(
            "company", "supplier_id", "invoice_no", name="uq_ap_invoices_supplier_no",
        ),
        Index("idx_ap_invoices_open", "company", "status", "due_date"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ap_suppliers.id"), nullable=False,
    )
    invoice_no: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ApInvoiceStatus.OPEN.value,
    )
    hold_pay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    supplier: Mapped[ApSupplierModel] = relationship()


class ApPayRunModel(TrackedBase):
    """A pay run for one company, period and currency."""

    __tablename__ = "ap_pay_runs"

    __table_args__ = (
        Index("idx_ap_pay_runs_company_status", "company", "status"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayRunStatus.DRAFT.value,
    )
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    exported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    journal_entry_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list["ApPayLineModel"]] = relationship(
        back_populates="pay_run",
        cascade="all, delete-orphan",
        order_by="ApPayLineModel.created_at",
    )

    def to_dto(self) -> PayRun:
        return PayRun(
            pay_run_id=self.id,
            company=self.company,
            year=self.year,
            month=self.month,
            currency=self.currency,
            status=PayRunStatus(self.status),
            journal_entry_id=self.journal_entry_id,
        )


class ApPayLineModel(TrackedBase):
    """One invoice selected into a pay run."""

    __tablename__ = "ap_pay_lines"

    __table_args__ = (
        Index("idx_ap_pay_lines_run", "pay_run_id"),
    )

    pay_run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ap_pay_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ap_invoices.id"), nullable=False,
    )
    supplier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ap_suppliers.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    fx_rate: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayLineStatus.SELECTED.value,
    )
    selection_run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    pay_run: Mapped[ApPayRunModel] = relationship(back_populates="lines")
    invoice: Mapped[ApInvoiceModel] = relationship()
    supplier: Mapped[ApSupplierModel] = relationship()


class ApBankProfileModel(TrackedBase):
    """How a company's bank wants its payment files."""

    __tablename__ = "ap_bank_profiles"

    __table_args__ = (
        UniqueConstraint("company", "bank_code", name="uq_ap_bank_profiles_code"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    bank_code: Mapped[str] = mapped_column(String(50), nullable=False)
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    debtor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    debtor_iban: Mapped[str] = mapped_column(String(34), nullable=False)
    debtor_bic: Mapped[str | None] = mapped_column(String(11), nullable=True)


class ApBankFileModel(TrackedBase):
    """A rendered bank file.  ``checksum`` is the sha256 of ``content``."""

    __tablename__ = "ap_bank_files"

    pay_run_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ap_pay_runs.id"), nullable=False,
    )
    bank_code: Mapped[str] = mapped_column(String(50), nullable=False)
    filename: Mapped[str] = mapped_column(String(200), nullable=False)
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    line_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)


class ApRemittanceModel(TrackedBase):
    """Remittance advice queued for one supplier of an exported pay run."""

    __tablename__ = "ap_remittances"

    pay_run_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ap_pay_runs.id"), nullable=False,
    )
    supplier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ap_suppliers.id"), nullable=False,
    )
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    invoice_count: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="QUEUED")


class ApFxRateModel(TrackedBase):
    __tablename__ = "ap_fx_rates"

    __table_args__ = (
        UniqueConstraint("from_ccy", "to_ccy", "as_of", name="uq_ap_fx_rates"),
    )

    from_ccy: Mapped[str] = mapped_column(String(3), nullable=False)
    to_ccy: Mapped[str] = mapped_column(String(3), nullable=False)
    as_of: Mapped[date] = mapped_column(Date, nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
