"""
Allocation ORM models (``backoffice_modules.alloc.orm``).

Responsibility
--------------
Persistence for allocation rules and their PERCENT targets, driver
statistics per period, the source-to-target account map, and the lines
each run produced.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``
and the allocation engine types.  MUST NOT be imported by the kernel.
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

from backoffice_engines.allocation import (
    AllocationMethod,
    AllocationRule,
    AllocationTarget,
    DriverValue,
)
from backoffice_kernel.db.base import TrackedBase, UUIDString


class AllocRuleModel(TrackedBase):
    """
    An allocation rule.

    Guarantees:
        - code is unique within a company (uq_alloc_rules_company_code).
        - ``to_dto()`` re-validates through the engine dataclass.
    """

    __tablename__ = "alloc_rules"

    __table_args__ = (
        UniqueConstraint("company", "code", name="uq_alloc_rules_company_code"),
        Index("idx_alloc_rules_company_active", "company", "active"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    src_account: Mapped[str] = mapped_column(String(50), nullable=False)
    src_cc_like: Mapped[str | None] = mapped_column(String(100), nullable=True)
    src_project: Mapped[str | None] = mapped_column(String(100), nullable=True)
    driver_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rate_per_unit: Mapped[Decimal | None] = mapped_column(nullable=True)
    eff_from: Mapped[date] = mapped_column(Date, nullable=False)
    eff_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    order_no: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    targets: Mapped[list["AllocRuleTargetModel"]] = relationship(
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="AllocRuleTargetModel.position",
    )

    def to_dto(self) -> AllocationRule:
        return AllocationRule(
            code=self.code,
            name=self.name,
            method=AllocationMethod(self.method),
            src_account=self.src_account,
            src_cc_like=self.src_cc_like,
            src_project=self.src_project,
            driver_code=self.driver_code,
            rate_per_unit=self.rate_per_unit,
            targets=tuple(
                AllocationTarget(t.cost_center, t.percent) for t in self.targets
            ),
            eff_from=self.eff_from,
            eff_to=self.eff_to,
            order_no=self.order_no,
            active=self.active,
        )


class AllocRuleTargetModel(TrackedBase):
    """A PERCENT rule's target cost center and share."""

    __tablename__ = "alloc_rule_targets"

    __table_args__ = (
        UniqueConstraint("rule_id", "cost_center", name="uq_alloc_rule_targets_cc"),
    )

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("alloc_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_center: Mapped[str] = mapped_column(String(100), nullable=False)
    percent: Mapped[Decimal] = mapped_column(nullable=False)

    rule: Mapped[AllocRuleModel] = relationship(back_populates="targets")


class AllocDriverValueModel(TrackedBase):
    """A driver statistic for one cost center / project in one period."""

    __tablename__ = "alloc_driver_values"

    __table_args__ = (
        UniqueConstraint(
            "company", "driver_code", "year", "month", "cost_center", "project",
            name="uq_alloc_driver_values_scope",
        ),
        Index("idx_alloc_driver_values_period", "company", "driver_code", "year", "month"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    driver_code: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_center: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project: Mapped[str | None] = mapped_column(String(100), nullable=True)
    value: Mapped[Decimal] = mapped_column(nullable=False)

    def to_dto(self) -> DriverValue:
        return DriverValue(
            driver_code=self.driver_code,
            value=self.value,
            cost_center=self.cost_center,
            project=self.project,
        )


class AllocAccountMapModel(TrackedBase):
    """Where a source account's allocations are debited."""

    __tablename__ = "alloc_account_map"

    __table_args__ = (
        UniqueConstraint("company", "src_account", name="uq_alloc_account_map_src"),
    )

    company: Mapped[str] = mapped_column(String(50), nullable=False)
    src_account: Mapped[str] = mapped_column(String(50), nullable=False)
    target_account: Mapped[str] = mapped_column(String(50), nullable=False)


class AllocRunLineModel(TrackedBase):
    """One allocation line produced by a commit run."""

    __tablename__ = "alloc_run_lines"

    __table_args__ = (
        Index("idx_alloc_run_lines_run", "run_id"),
        Index("idx_alloc_run_lines_period", "company", "year", "month"),
    )

    run_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    company: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    rule_code: Mapped[str] = mapped_column(String(50), nullable=False)
    src_account: Mapped[str] = mapped_column(String(50), nullable=False)
    target_account: Mapped[str] = mapped_column(String(50), nullable=False)
    target_cost_center: Mapped[str | None] = mapped_column(String(100), nullable=True)
    target_project: Mapped[str | None] = mapped_column(String(100), nullable=True)
    driver_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    driver_value: Mapped[Decimal | None] = mapped_column(nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    note: Mapped[str] = mapped_column(String(200), nullable=False, default="")
