"""
Dunning ORM models (``backoffice_modules.dunning.orm``).

Responsibility
--------------
Persistence for AR customers and their open items, dunning policy steps,
reminder templates and the log of every reminder sent.  The log doubles
as the throttle source: a step is not repeated within its throttle window.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, UUIDString
from backoffice_modules.dunning.models import DunningChannel, PolicyStep


class ArCustomerModel(TrackedBase):
    __tablename__ = "ar_customers"

    __table_args__ = (
        UniqueConstraint("company", "customer_code", name="uq_ar_customers_code"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    segment: Mapped[str | None] = mapped_column(String(50), nullable=True)


class ArOpenItemModel(TrackedBase):
    """An unpaid customer invoice."""

    __tablename__ = "ar_open_items"

    __table_args__ = (
        UniqueConstraint("company", "invoice_no", name="uq_ar_open_items_no"),
        Index("idx_ar_open_items_customer", "company", "customer_id"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ar_customers.id"), nullable=False,
    )
    invoice_no: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_due: Mapped[Decimal] = mapped_column(nullable=False)

    customer: Mapped[ArCustomerModel] = relationship()


class ArDunningPolicyModel(TrackedBase):
    """
    One step of a dunning policy.

    A step applies to customers of ``segment`` (all segments when NULL)
    whose group sits in ``from_bucket``.
    """

    __tablename__ = "ar_dunning_policies"

    __table_args__ = (
        UniqueConstraint(
            "company", "policy_code", "from_bucket", "step_idx",
            name="uq_ar_dunning_policies_step",
        ),
        Index("idx_ar_dunning_policies_bucket", "company", "from_bucket"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    policy_code: Mapped[str] = mapped_column(String(50), nullable=False)
    segment: Mapped[str | None] = mapped_column(String(50), nullable=True)
    from_bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    step_idx: Mapped[int] = mapped_column(Integer, nullable=False)
    wait_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    template_code: Mapped[str] = mapped_column(String(50), nullable=False)
    throttle_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    def to_dto(self) -> PolicyStep:
        return PolicyStep(
            policy_code=self.policy_code,
            from_bucket=self.from_bucket,
            step_idx=self.step_idx,
            wait_days=self.wait_days,
            channel=DunningChannel(self.channel),
            template_code=self.template_code,
            throttle_days=self.throttle_days,
            segment=self.segment,
        )


class ArDunningTemplateModel(TrackedBase):
    __tablename__ = "ar_dunning_templates"

    __table_args__ = (
        UniqueConstraint("company", "template_code", name="uq_ar_dunning_templates_code"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    template_code: Mapped[str] = mapped_column(String(50), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)


class ArDunningLogModel(TrackedBase):
    """A reminder handed to the outbound channel."""

    __tablename__ = "ar_dunning_log"

    __table_args__ = (
        Index(
            "idx_ar_dunning_log_step",
            "company", "customer_id", "bucket", "policy_code", "step_idx",
        ),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ar_customers.id"), nullable=False,
    )
    bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    policy_code: Mapped[str] = mapped_column(String(50), nullable=False)
    step_idx: Mapped[int] = mapped_column(Integer, nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    template_code: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient: Mapped[str | None] = mapped_column(String(500), nullable=True)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="QUEUED")
    run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
