"""
Run domain types -- frozen DTOs and status enums.

Contract:
    Everything here is immutable and free of I/O.  ORM models convert to
    and from these DTOs; tasks and callers only ever see the DTOs.

Architecture: backoffice_runs/domain.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class RunMode(str, Enum):
    DRY_RUN = "DRY_RUN"  # Full computation, domain effects rolled back
    COMMIT = "COMMIT"  # Domain effects and ledger postings persist


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    PARTIALLY_COMPLETED = "PARTIALLY_COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RunStatus.COMPLETED,
            RunStatus.PARTIALLY_COMPLETED,
            RunStatus.FAILED,
            RunStatus.CANCELLED,
        )


class RunItemStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ScheduleFrequency(str, Enum):
    ONCE = "once"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CRON = "cron"  # Driven by cron_expression
    ON_DEMAND = "on_demand"  # Never fires automatically


# =============================================================================
# Run DTOs
# =============================================================================


@dataclass(frozen=True)
class Run:
    """Immutable snapshot of a run.

    ``idempotency_key`` is UNIQUE: a key maps to exactly one run.
    ``seq`` is allocated via SequenceService for monotonic ordering.
    """

    run_id: UUID
    run_type: str  # Registered task key, e.g. "alloc.cost_allocation"
    company: str
    mode: RunMode
    status: RunStatus
    idempotency_key: str
    parameters: dict[str, Any] = field(default_factory=dict)
    total_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    summary: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_by: UUID | None = None
    correlation_id: str | None = None
    error_summary: str | None = None
    seq: int | None = None

    @property
    def is_dry_run(self) -> bool:
        return self.mode == RunMode.DRY_RUN


@dataclass(frozen=True)
class RunItemResult:
    """Outcome of one run item.

    Each item runs in its own SAVEPOINT; a failure here never aborts its
    siblings.  ``result_data`` carries the item's preview or posting refs.
    """

    item_index: int
    item_key: str  # Business identifier (rule code, subscription id, ...)
    status: RunItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class RunResult:
    """What a caller gets back from executing (or replaying) a run."""

    run: Run
    item_results: tuple[RunItemResult, ...] = ()
    replayed: bool = False
    duration_ms: int = 0

    @property
    def run_id(self) -> UUID:
        return self.run.run_id

    @property
    def status(self) -> RunStatus:
        return self.run.status

    @property
    def summary(self) -> dict[str, Any]:
        return self.run.summary

    @property
    def succeeded(self) -> int:
        return self.run.succeeded_items

    @property
    def failed(self) -> int:
        return self.run.failed_items

    @property
    def skipped(self) -> int:
        return self.run.skipped_items


# =============================================================================
# Schedule DTO
# =============================================================================


@dataclass(frozen=True)
class JobSchedule:
    """Immutable snapshot of a recurring run schedule.

    Evaluation (``should_fire``) is pure: it reads ``next_run_at`` and a
    caller-supplied time, nothing else.
    """

    schedule_id: UUID
    name: str
    run_type: str
    company: str
    frequency: ScheduleFrequency
    mode: RunMode = RunMode.COMMIT
    parameters: dict[str, Any] = field(default_factory=dict)
    cron_expression: str | None = None
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_status: RunStatus | None = None
    is_active: bool = True
    created_by: UUID | None = None
