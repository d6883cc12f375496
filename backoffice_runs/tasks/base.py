"""
RunTask protocol, supporting types, and TaskRegistry.

Contract:
    ``RunTask`` defines the interface every run task implements.
    ``TaskRegistry`` stores registered tasks keyed by ``run_type``.
    ``RunContext`` hands a task its session, services and run snapshot.

Architecture:
    backoffice_runs/tasks.  Task implementations import module services
    lazily inside their methods so the registry stays cheap to build.

Invariants enforced:
    - One task per ``run_type`` string.
    - Tasks never commit or open savepoints; the executor owns both.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import TaskNotRegisteredError, ValidationError
from backoffice_kernel.services.auditor_service import AuditorService
from backoffice_kernel.services.journal_service import JournalService
from backoffice_kernel.services.lock_service import RunLockService
from backoffice_runs.domain.types import (
    Run,
    RunItemResult,
    RunItemStatus,
    RunMode,
)


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class RunItemInput:
    """One unit of work, created by ``RunTask.prepare_items()``."""

    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RunTaskResult:
    """Returned by ``RunTask.execute_item()``; the executor builds RunItemResult from it."""

    status: RunItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def succeeded(cls, **data: Any) -> RunTaskResult:
        return cls(RunItemStatus.SUCCEEDED, result_data=data)

    @classmethod
    def skipped(cls, code: str, message: str, **data: Any) -> RunTaskResult:
        return cls(
            RunItemStatus.SKIPPED,
            result_data=data or None,
            error_code=code,
            error_message=message,
        )

    @classmethod
    def failed(cls, code: str, message: str, **data: Any) -> RunTaskResult:
        return cls(
            RunItemStatus.FAILED,
            result_data=data or None,
            error_code=code,
            error_message=message,
        )


@dataclass(frozen=True)
class RunContext:
    """Session, services and run snapshot handed to a task.

    ``run`` is None while the orchestrator is still validating a request
    (``precheck``), and set for ``prepare_items``/``execute_item``/``finalize``.
    """

    session: Session
    clock: Clock
    auditor: AuditorService
    journal: JournalService
    locks: RunLockService
    actor_id: UUID
    run: Run | None = None

    def with_run(self, run: Run) -> RunContext:
        return replace(self, run=run)

    @property
    def as_of(self) -> datetime:
        return self.clock.now()

    @property
    def company(self) -> str:
        assert self.run is not None
        return self.run.company

    @property
    def mode(self) -> RunMode:
        assert self.run is not None
        return self.run.mode

    @property
    def is_dry_run(self) -> bool:
        return self.mode == RunMode.DRY_RUN

    @property
    def run_id(self) -> UUID:
        assert self.run is not None
        return self.run.run_id

    @property
    def parameters(self) -> dict[str, Any]:
        assert self.run is not None
        return self.run.parameters

    def parameter(self, name: str) -> Any:
        """A required run parameter.

        Raises:
            ValidationError: The run was submitted without ``name``.
        """
        value = self.parameters.get(name)
        if value is None:
            raise ValidationError(name, None, "is required")
        return value


# =============================================================================
# RunTask Protocol
# =============================================================================


@runtime_checkable
class RunTask(Protocol):
    """Interface for run task implementations.

    Contract:
        - ``run_type``: unique key registered in TaskRegistry.
        - ``normalize_parameters()``: canonical, JSON-safe parameters.  Two
          requests meaning the same thing normalize identically, so they
          share a default idempotency key.
        - ``scheduled_parameters()``: fills the defaults a schedule leaves
          relative to its fire time (the period just closed, today's date)
          before ``normalize_parameters()`` runs.
        - ``precheck()``: service-level guards; raises typed errors to the
          caller before anything is persisted.
        - ``prepare_items()``: eligible work, as an immutable tuple.
        - ``execute_item()``: ONE item, inside a SAVEPOINT.
        - ``finalize()``: run summary; aggregate postings in COMMIT mode.

    Non-goals:
        - Does NOT manage transactions; the executor owns savepoints.
    """

    @property
    def run_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def normalize_parameters(self, parameters: dict[str, Any]) -> dict[str, Any]: ...

    def scheduled_parameters(self, stored: dict[str, Any], fired_at: datetime) -> dict[str, Any]: ...

    def precheck(
        self,
        company: str,
        mode: RunMode,
        parameters: dict[str, Any],
        ctx: RunContext,
    ) -> None: ...

    def prepare_items(self, ctx: RunContext) -> tuple[RunItemInput, ...]: ...

    def execute_item(self, item: RunItemInput, ctx: RunContext) -> RunTaskResult: ...

    def finalize(
        self,
        ctx: RunContext,
        results: Sequence[RunItemResult],
    ) -> dict[str, Any]: ...


def default_closed_period(stored: dict[str, Any], fired_at: datetime) -> dict[str, Any]:
    """``stored`` with ``year``/``month`` defaulting to the month before ``fired_at``."""
    if stored.get("year") is not None and stored.get("month") is not None:
        return stored
    closed = Period.of(fired_at.date()).previous()
    return {**stored, "year": closed.year, "month": closed.month}


def succeeded_data(results: Sequence[RunItemResult]) -> list[dict[str, Any]]:
    """``result_data`` of the SUCCEEDED items, in item order."""
    return [
        r.result_data or {}
        for r in results
        if r.status == RunItemStatus.SUCCEEDED
    ]


# =============================================================================
# TaskRegistry
# =============================================================================


class TaskRegistry:
    """Registry mapping run_type strings to RunTask implementations.

    Contract:
        - ``register()`` adds a task; raises ValueError on duplicate.
        - ``get()`` raises TaskNotRegisteredError if missing.
        - ``list_tasks()`` returns all registered run_type strings, sorted.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, RunTask] = {}

    def register(self, task: RunTask) -> None:
        """Register a run task.

        Raises:
            ValueError: If the run_type is already registered.
        """
        if task.run_type in self._tasks:
            raise ValueError(f"Run type '{task.run_type}' is already registered")
        self._tasks[task.run_type] = task

    def get(self, run_type: str) -> RunTask:
        """Retrieve a registered task.

        Raises:
            TaskNotRegisteredError: If nothing is registered for run_type.
        """
        try:
            return self._tasks[run_type]
        except KeyError:
            raise TaskNotRegisteredError(run_type, self.list_tasks()) from None

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks.keys()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, run_type: str) -> bool:
        return run_type in self._tasks
