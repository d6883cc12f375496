"""
Billing ORM models (``backoffice_modules.billing.orm``).

Responsibility
--------------
Persistence for the product catalog, price books, subscriptions, usage
records, invoices with their lines, and the FX rates used to present an
invoice in a currency other than its price currency.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``.
MUST NOT be imported by the kernel.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, UUIDString
from backoffice_modules.billing.models import (
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    Subscription,
    SubscriptionStatus,
)


class BillProductModel(TrackedBase):
    """A sellable SKU.  ``price_model`` is RECURRING or USAGE."""

    __tablename__ = "bill_products"

    __table_args__ = (
        UniqueConstraint("company", "sku", name="uq_bill_products_sku"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    sku: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price_model: Mapped[str] = mapped_column(String(20), nullable=False)
    gl_revenue_account: Mapped[str | None] = mapped_column(String(50), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class BillPriceBookModel(TrackedBase):
    """A named set of prices, e.g. DEFAULT or PARTNER."""

    __tablename__ = "bill_price_books"

    __table_args__ = (
        UniqueConstraint("company", "code", name="uq_bill_price_books_code"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class BillPriceModel(TrackedBase):
    """Unit price of a product in one currency of one price book."""

    __tablename__ = "bill_prices"

    __table_args__ = (
        UniqueConstraint(
            "price_book_id", "product_id", "currency", name="uq_bill_prices_scope",
        ),
    )

    price_book_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bill_price_books.id"), nullable=False,
    )
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bill_products.id"), nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    unit_amount: Mapped[Decimal] = mapped_column(nullable=False)


class BillSubscriptionModel(TrackedBase):
    """A customer's subscription to a product."""

    __tablename__ = "bill_subscriptions"

    __table_args__ = (
        Index("idx_bill_subscriptions_due", "company", "status", "bill_anchor"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bill_products.id"), nullable=False,
    )
    price_book_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bill_price_books.id"), nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value,
    )
    bill_anchor: Mapped[date] = mapped_column(Date, nullable=False)
    price_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    product: Mapped[BillProductModel] = relationship()

    def to_dto(self) -> Subscription:
        return Subscription(
            subscription_id=self.id,
            company=self.company,
            customer_id=self.customer_id,
            sku=self.product.sku,
            quantity=self.quantity,
            status=SubscriptionStatus(self.status),
            bill_anchor=self.bill_anchor,
            price_currency=self.price_currency,
        )


class BillUsageModel(TrackedBase):
    """Metered usage for a subscription on one day."""

    __tablename__ = "bill_usage"

    __table_args__ = (
        Index("idx_bill_usage_sub_date", "subscription_id", "usage_date"),
    )

    subscription_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bill_subscriptions.id"), nullable=False,
    )
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)


class BillInvoiceModel(TrackedBase):
    """
    A customer invoice.

    Guarantees:
        - At most one invoice per (subscription, period_start, period_end).
        - invoice_no is unique.
    """

    __tablename__ = "bill_invoices"

    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "period_start", "period_end",
            name="uq_bill_invoices_sub_period",
        ),
        UniqueConstraint("invoice_no", name="uq_bill_invoices_no"),
        Index("idx_bill_invoices_company_status", "company", "status"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_no: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)
    subscription_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bill_subscriptions.id"), nullable=False,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    present_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    fx_rate: Mapped[Decimal] = mapped_column(nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax_total: Mapped[Decimal] = mapped_column(nullable=False)
    total: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.DRAFT.value,
    )
    run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    journal_entry_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list["BillInvoiceLineModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="BillInvoiceLineModel.line_no",
    )

    def to_dto(self) -> Invoice:
        return Invoice(
            invoice_id=self.id,
            invoice_no=self.invoice_no,
            company=self.company,
            customer_id=self.customer_id,
            subscription_id=self.subscription_id,
            period_start=self.period_start,
            period_end=self.period_end,
            issue_date=self.issue_date,
            due_date=self.due_date,
            currency=self.present_currency,
            fx_rate=self.fx_rate,
            subtotal=self.subtotal,
            tax_total=self.tax_total,
            total=self.total,
            status=InvoiceStatus(self.status),
            lines=tuple(line.to_dto() for line in self.lines),
            journal_entry_id=self.journal_entry_id,
        )


class BillInvoiceLineModel(TrackedBase):
    __tablename__ = "bill_invoice_lines"

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bill_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    revenue_account: Mapped[str] = mapped_column(String(50), nullable=False)

    invoice: Mapped[BillInvoiceModel] = relationship(back_populates="lines")

    def to_dto(self) -> InvoiceLine:
        return InvoiceLine(
            line_no=self.line_no,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            amount=self.amount,
            tax_amount=self.tax_amount,
            revenue_account=self.revenue_account,
        )


class BillFxRateModel(TrackedBase):
    """Conversion rate from one currency to another, effective from ``as_of``."""

    __tablename__ = "bill_fx_rates"

    __table_args__ = (
        UniqueConstraint("from_ccy", "to_ccy", "as_of", name="uq_bill_fx_rates"),
    )

    from_ccy: Mapped[str] = mapped_column(String(3), nullable=False)
    to_ccy: Mapped[str] = mapped_column(String(3), nullable=False)
    as_of: Mapped[date] = mapped_column(Date, nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
