"""
Run persistence: ``runs``, ``run_items`` and ``run_schedules``.

The executor and scheduler work on these rows; everything above them sees
the frozen DTOs from ``backoffice_runs.domain.types``.  Enum columns are
stored as their string values.

Constraints:
    - ``runs.idempotency_key`` is UNIQUE; a key names exactly one run.
    - ``runs.seq`` comes from SequenceService, never from the database.
    - ``run_items`` rows go with their run (ON DELETE CASCADE).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from backoffice_runs.domain.types import JobSchedule, Run, RunItemResult

# DTO attributes copied one-to-one onto columns of the same name.
_RUN_FIELDS = (
    "run_type", "company", "idempotency_key", "total_items", "succeeded_items",
    "failed_items", "skipped_items", "seq", "started_at", "completed_at",
    "correlation_id", "error_summary",
)
_ITEM_FIELDS = (
    "item_index", "item_key", "error_code", "error_message", "result_data",
    "duration_ms", "started_at", "completed_at",
)
_SCHEDULE_FIELDS = (
    "name", "run_type", "company", "cron_expression", "next_run_at",
    "last_run_at", "is_active",
)


def _copy(source: Any, names: tuple[str, ...]) -> dict[str, Any]:
    return {name: getattr(source, name) for name in names}


class RunModel(TrackedBase):
    __tablename__ = "runs"
    __table_args__ = (
        Index("ix_runs_type_company_status", "run_type", "company", "status"),
        Index("ix_runs_created_at", "created_at"),
    )

    run_type: Mapped[str] = mapped_column(String(100))
    company: Mapped[str] = mapped_column(String(50))
    mode: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(30))
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True)
    parameters: Mapped[dict | None] = mapped_column(JSON)
    summary: Mapped[dict | None] = mapped_column(JSON)
    total_items: Mapped[int] = mapped_column(default=0)
    succeeded_items: Mapped[int] = mapped_column(default=0)
    failed_items: Mapped[int] = mapped_column(default=0)
    skipped_items: Mapped[int] = mapped_column(default=0)
    seq: Mapped[int | None] = mapped_column(unique=True)
    started_at: Mapped[datetime | None]
    completed_at: Mapped[datetime | None]
    correlation_id: Mapped[str | None] = mapped_column(String(200))
    error_summary: Mapped[str | None] = mapped_column(Text)

    items: Mapped[list[RunItemModel]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RunItemModel.item_index",
    )

    def to_dto(self) -> Run:
        from backoffice_runs.domain.types import Run, RunMode, RunStatus

        return Run(
            run_id=self.id,
            mode=RunMode(self.mode),
            status=RunStatus(self.status),
            parameters=self.parameters or {},
            summary=self.summary or {},
            created_at=self.created_at,
            created_by=self.created_by_id,
            **_copy(self, _RUN_FIELDS),
        )

    @classmethod
    def from_dto(cls, dto: Run, created_by_id: UUID) -> RunModel:
        return cls(
            id=dto.run_id,
            mode=dto.mode.value,
            status=dto.status.value,
            parameters=dto.parameters or None,
            summary=dto.summary or None,
            created_by_id=created_by_id,
            **_copy(dto, _RUN_FIELDS),
        )


class RunItemModel(TrackedBase):
    __tablename__ = "run_items"
    __table_args__ = (
        Index("ix_run_items_run_status", "run_id", "status"),
    )

    run_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("runs.id", ondelete="CASCADE"))
    item_index: Mapped[int]
    item_key: Mapped[str] = mapped_column(String(200), index=True)
    status: Mapped[str] = mapped_column(String(20))
    error_code: Mapped[str | None] = mapped_column(String(100))
    error_message: Mapped[str | None] = mapped_column(Text)
    result_data: Mapped[dict | None] = mapped_column(JSON)
    duration_ms: Mapped[int] = mapped_column(default=0)
    started_at: Mapped[datetime | None]
    completed_at: Mapped[datetime | None]

    run: Mapped[RunModel] = relationship(back_populates="items")

    def to_dto(self) -> RunItemResult:
        from backoffice_runs.domain.types import RunItemResult, RunItemStatus

        return RunItemResult(status=RunItemStatus(self.status), **_copy(self, _ITEM_FIELDS))

    @classmethod
    def from_dto(cls, dto: RunItemResult, run_id: UUID, created_by_id: UUID) -> RunItemModel:
        return cls(
            run_id=run_id,
            status=dto.status.value,
            created_by_id=created_by_id,
            **_copy(dto, _ITEM_FIELDS),
        )


class RunScheduleModel(TrackedBase):
    __tablename__ = "run_schedules"
    __table_args__ = (
        Index("ix_run_schedules_due", "is_active", "next_run_at"),
    )

    name: Mapped[str] = mapped_column(String(200))
    run_type: Mapped[str] = mapped_column(String(100))
    company: Mapped[str] = mapped_column(String(50))
    mode: Mapped[str] = mapped_column(String(20), default="COMMIT")
    frequency: Mapped[str] = mapped_column(String(20))
    parameters: Mapped[dict | None] = mapped_column(JSON)
    cron_expression: Mapped[str | None] = mapped_column(String(100))
    next_run_at: Mapped[datetime | None]
    last_run_at: Mapped[datetime | None]
    last_run_status: Mapped[str | None] = mapped_column(String(30))
    is_active: Mapped[bool] = mapped_column(default=True)

    def to_dto(self) -> JobSchedule:
        from backoffice_runs.domain.types import (
            JobSchedule,
            RunMode,
            RunStatus,
            ScheduleFrequency,
        )

        return JobSchedule(
            schedule_id=self.id,
            frequency=ScheduleFrequency(self.frequency),
            mode=RunMode(self.mode),
            parameters=self.parameters or {},
            last_run_status=RunStatus(self.last_run_status) if self.last_run_status else None,
            created_by=self.created_by_id,
            **_copy(self, _SCHEDULE_FIELDS),
        )

    @classmethod
    def from_dto(cls, dto: JobSchedule, created_by_id: UUID) -> RunScheduleModel:
        return cls(
            id=dto.schedule_id,
            mode=dto.mode.value,
            frequency=dto.frequency.value,
            parameters=dto.parameters or None,
            last_run_status=dto.last_run_status.value if dto.last_run_status else None,
            created_by_id=created_by_id,
            **_copy(dto, _SCHEDULE_FIELDS),
        )
