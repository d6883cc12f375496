"""
RunExecutor -- SAVEPOINT-per-item run execution engine.

Contract:
    Orchestrates the run lifecycle: submit (with idempotency), execute
    (SAVEPOINT per item, dry-run rollback), cancel, query.

Architecture: backoffice_runs/services.  Imports from backoffice_runs.domain,
    backoffice_runs.models, backoffice_runs.tasks and kernel services.

Invariants enforced:
    - SAVEPOINT isolation per item: one failure never aborts its siblings.
    - Idempotency via the UNIQUE idempotency_key.
    - Sequence monotonicity via SequenceService.
    - All timestamps from the injected Clock.
    - Audit trail for every lifecycle transition.
    - Single runner: one RUNNING run per (run_type, company).
    - DRY_RUN persists no domain effects: every item savepoint, and the
      run scope around items and finalize, is rolled back.
"""

from __future__ import annotations

import time
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.exceptions import (
    BackofficeError,
    RunIdempotencyError,
    RunInProgressError,
    RunNotFoundError,
    RunStateError,
)
from backoffice_kernel.logging_config import LogContext, get_logger
from backoffice_kernel.services.auditor_service import AuditorService
from backoffice_kernel.services.journal_service import JournalService
from backoffice_kernel.services.lock_service import RunLockService
from backoffice_kernel.services.sequence_service import SequenceService
from backoffice_kernel.utils.hashing import to_json_safe
from backoffice_runs.domain.types import (
    Run,
    RunItemResult,
    RunItemStatus,
    RunMode,
    RunResult,
    RunStatus,
)
from backoffice_runs.models.run import RunItemModel, RunModel
from backoffice_runs.tasks.base import RunContext, RunItemInput, RunTask, TaskRegistry

logger = get_logger("runs.executor")


class RunExecutor:
    """Run execution engine with SAVEPOINT-per-item isolation.

    Contract:
        - ``submit()`` creates a PENDING run.
        - ``execute()`` runs it: prepare, items, finalize.
        - ``cancel()`` marks a PENDING/RUNNING run as CANCELLED.
        - ``get_run()`` / ``get_run_items()`` / ``find_by_key()`` for queries.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.
        - Does NOT manage background threads; that is the scheduler's job.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        auditor_service: AuditorService | None = None,
        sequence_service: SequenceService | None = None,
        journal_service: JournalService | None = None,
        lock_service: RunLockService | None = None,
    ):
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._auditor = auditor_service or AuditorService(session, self._clock)
        self._sequence = sequence_service or SequenceService(session)
        self._journal = journal_service or JournalService(
            session, self._auditor, self._clock,
        )
        self._locks = lock_service or RunLockService(
            session, self._auditor, self._clock,
        )

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry

    def context(self, actor_id: UUID, run: Run | None = None) -> RunContext:
        """A RunContext sharing this executor's session and services."""
        return RunContext(
            session=self._session,
            clock=self._clock,
            auditor=self._auditor,
            journal=self._journal,
            locks=self._locks,
            actor_id=actor_id,
            run=run,
        )

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit(
        self,
        run_type: str,
        company: str,
        mode: RunMode,
        idempotency_key: str,
        actor_id: UUID,
        parameters: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> Run:
        """Create a new PENDING run.

        Raises:
            TaskNotRegisteredError: If run_type is not in the registry.
            RunIdempotencyError: If idempotency_key is already used.
        """
        self._task_registry.get(run_type)

        existing = self.find_by_key(idempotency_key)
        if existing is not None:
            raise RunIdempotencyError(idempotency_key, str(existing.run_id))

        seq = self._sequence.next_value(SequenceService.RUN)

        now = self._clock.now()
        run_id = uuid4()

        dto = Run(
            run_id=run_id,
            run_type=run_type,
            company=company,
            mode=mode,
            status=RunStatus.PENDING,
            idempotency_key=idempotency_key,
            parameters=to_json_safe(parameters or {}),
            created_at=now,
            created_by=actor_id,
            correlation_id=correlation_id,
            seq=seq,
        )

        model = RunModel.from_dto(dto, created_by_id=actor_id)
        model.created_at = now
        self._session.add(model)
        self._session.flush()

        self._auditor.record_run_submitted(
            run_id, run_type, company, mode.value, idempotency_key, actor_id,
        )

        logger.info(
            "run_submitted",
            extra={
                "run_id": str(run_id),
                "run_type": run_type,
                "company": company,
                "mode": mode.value,
                "idempotency_key": idempotency_key,
                "seq": seq,
            },
        )

        return dto

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    def execute(self, run_id: UUID, actor_id: UUID) -> RunResult:
        """Execute a PENDING run.

        Raises:
            RunNotFoundError: If run_id does not exist.
            RunStateError: If the run is not PENDING.
            RunInProgressError: If another run of the same type is RUNNING
                for the same company.
            TaskNotRegisteredError: If the run's type is no longer registered.
        """
        start_time = time.monotonic()

        run_model = self._session.execute(
            select(RunModel).where(RunModel.id == run_id).with_for_update()
        ).scalar_one_or_none()

        if run_model is None:
            raise RunNotFoundError(str(run_id))

        if run_model.status != RunStatus.PENDING.value:
            raise RunStateError(str(run_id), run_model.status, "execute")

        task = self._task_registry.get(run_model.run_type)

        running_id = self._session.execute(
            select(RunModel.id).where(
                RunModel.run_type == run_model.run_type,
                RunModel.company == run_model.company,
                RunModel.status == RunStatus.RUNNING.value,
                RunModel.id != run_id,
            ).limit(1)
        ).scalar_one_or_none()
        if running_id is not None:
            raise RunInProgressError(
                run_model.run_type, run_model.company, str(running_id),
            )

        run_model.status = RunStatus.RUNNING.value
        run_model.started_at = self._clock.now()
        self._session.flush()
        self._auditor.record_run_started(run_id, actor_id)

        with LogContext.bind(
            run_id=str(run_id),
            run_type=run_model.run_type,
            company=run_model.company,
            actor_id=str(actor_id),
            correlation_id=run_model.correlation_id,
        ):
            logger.info("run_started", extra={"mode": run_model.mode})
            return self._run(task, run_model, actor_id, start_time)

    def _run(
        self,
        task: RunTask,
        run_model: RunModel,
        actor_id: UUID,
        start_time: float,
    ) -> RunResult:
        ctx = self.context(actor_id, run_model.to_dto())

        prepare_scope = self._session.begin_nested()
        try:
            items = task.prepare_items(ctx)
            prepare_scope.commit()
        except Exception as exc:
            prepare_scope.rollback()
            logger.warning("run_prepare_failed", exc_info=True)
            return self._fail_run(
                run_model, actor_id, f"prepare_items failed: {exc}", start_time,
            )

        run_model.total_items = len(items)
        self._session.flush()

        succeeded = 0
        failed = 0
        skipped = 0
        item_results: list[RunItemResult] = []

        # Items and finalize share one scope: rolled back for a dry run or
        # a failed finalize, released otherwise.
        run_scope = self._session.begin_nested()

        for run_item in items:
            item_result = self._execute_item(task, run_item, ctx)
            if item_result.status == RunItemStatus.SUCCEEDED:
                succeeded += 1
            elif item_result.status == RunItemStatus.SKIPPED:
                skipped += 1
            else:
                failed += 1
            item_results.append(item_result)

        summary: dict[str, Any] = {}
        finalize_error: str | None = None
        try:
            summary = task.finalize(ctx, tuple(item_results))
        except Exception as exc:
            finalize_error = f"finalize failed: {exc}"
            logger.warning("run_finalize_failed", exc_info=True)

        if ctx.is_dry_run or finalize_error is not None:
            run_scope.rollback()
        else:
            run_scope.commit()

        for item_result in item_results:
            item_model = RunItemModel.from_dto(
                item_result, run_id=run_model.id, created_by_id=actor_id,
            )
            item_model.created_at = self._clock.now()
            self._session.add(item_model)

        run_model.succeeded_items = succeeded
        run_model.failed_items = failed
        run_model.skipped_items = skipped
        run_model.summary = to_json_safe(summary)

        if finalize_error is not None:
            status = RunStatus.FAILED
            run_model.error_summary = finalize_error
        elif failed == 0 and skipped == 0:
            status = RunStatus.COMPLETED
        elif ctx.is_dry_run and failed == 0 and succeeded == 0:
            status = RunStatus.COMPLETED
        elif succeeded == 0 and skipped == 0:
            status = RunStatus.FAILED
        else:
            status = RunStatus.PARTIALLY_COMPLETED

        if failed > 0 and run_model.error_summary is None:
            run_model.error_summary = f"{failed} item(s) failed"

        run_model.status = status.value
        run_model.completed_at = self._clock.now()
        total_duration = int((time.monotonic() - start_time) * 1000)
        self._session.flush()

        if status == RunStatus.FAILED:
            self._auditor.record_run_failed(
                run_model.id,
                run_model.error_summary or "All items failed",
                actor_id,
            )
        else:
            self._auditor.record_run_completed(
                run_model.id, status.value, succeeded, failed, skipped, actor_id,
            )

        logger.info(
            "run_completed",
            extra={
                "status": status.value,
                "total_items": len(items),
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "duration_ms": total_duration,
            },
        )

        return RunResult(
            run=run_model.to_dto(),
            item_results=tuple(item_results),
            duration_ms=total_duration,
        )

    def _execute_item(
        self,
        task: RunTask,
        run_item: RunItemInput,
        ctx: RunContext,
    ) -> RunItemResult:
        item_start = time.monotonic()
        item_started_at = self._clock.now()

        savepoint = self._session.begin_nested()
        try:
            result = task.execute_item(run_item, ctx)
        except Exception as exc:
            savepoint.rollback()
            error_code = (
                exc.code if isinstance(exc, BackofficeError) else "UNHANDLED_EXCEPTION"
            )
            logger.warning(
                "run_item_failed",
                extra={
                    "item_key": run_item.item_key,
                    "error_code": error_code,
                    "error": str(exc),
                },
            )
            return RunItemResult(
                item_index=run_item.item_index,
                item_key=run_item.item_key,
                status=RunItemStatus.FAILED,
                error_code=error_code,
                error_message=str(exc),
                duration_ms=int((time.monotonic() - item_start) * 1000),
                started_at=item_started_at,
                completed_at=self._clock.now(),
            )

        if result.status == RunItemStatus.SUCCEEDED and not ctx.is_dry_run:
            savepoint.commit()
        else:
            savepoint.rollback()

        if result.status == RunItemStatus.FAILED:
            logger.warning(
                "run_item_failed",
                extra={
                    "item_key": run_item.item_key,
                    "error_code": result.error_code,
                    "error": result.error_message,
                },
            )
        elif result.status == RunItemStatus.SKIPPED:
            logger.info(
                "run_item_skipped",
                extra={"item_key": run_item.item_key, "reason": result.error_code},
            )

        return RunItemResult(
            item_index=run_item.item_index,
            item_key=run_item.item_key,
            status=result.status,
            error_code=result.error_code,
            error_message=result.error_message,
            result_data=to_json_safe(result.result_data) if result.result_data else None,
            duration_ms=int((time.monotonic() - item_start) * 1000),
            started_at=item_started_at,
            completed_at=self._clock.now(),
        )

    # -------------------------------------------------------------------------
    # Cancel
    # -------------------------------------------------------------------------

    def cancel(self, run_id: UUID, reason: str, actor_id: UUID) -> Run:
        """Cancel a PENDING or RUNNING run.

        Raises:
            RunNotFoundError: If run_id does not exist.
            RunStateError: If the run already finished.
        """
        run_model = self._session.execute(
            select(RunModel).where(RunModel.id == run_id).with_for_update()
        ).scalar_one_or_none()

        if run_model is None:
            raise RunNotFoundError(str(run_id))

        if run_model.status not in (
            RunStatus.PENDING.value,
            RunStatus.RUNNING.value,
        ):
            raise RunStateError(str(run_id), run_model.status, "cancel")

        run_model.status = RunStatus.CANCELLED.value
        run_model.completed_at = self._clock.now()
        run_model.error_summary = f"Cancelled: {reason}"
        self._session.flush()

        self._auditor.record_run_cancelled(run_id, actor_id)
        logger.info("run_cancelled", extra={"run_id": str(run_id), "reason": reason})

        return run_model.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> Run:
        """Get a run by ID.

        Raises:
            RunNotFoundError: If run_id does not exist.
        """
        model = self._session.get(RunModel, run_id)
        if model is None:
            raise RunNotFoundError(str(run_id))
        return model.to_dto()

    def get_run_items(self, run_id: UUID) -> tuple[RunItemResult, ...]:
        models = self._session.execute(
            select(RunItemModel)
            .where(RunItemModel.run_id == run_id)
            .order_by(RunItemModel.item_index)
        ).scalars().all()

        return tuple(m.to_dto() for m in models)

    def find_by_key(self, idempotency_key: str) -> Run | None:
        model = self._session.execute(
            select(RunModel).where(RunModel.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _fail_run(
        self,
        run_model: RunModel,
        actor_id: UUID,
        error_summary: str,
        start_time: float,
    ) -> RunResult:
        """Mark the run FAILED and return its result."""
        run_model.status = RunStatus.FAILED.value
        run_model.completed_at = self._clock.now()
        run_model.error_summary = error_summary
        self._session.flush()

        total_duration = int((time.monotonic() - start_time) * 1000)

        self._auditor.record_run_failed(run_model.id, error_summary, actor_id)
        logger.info(
            "run_completed",
            extra={"status": RunStatus.FAILED.value, "error": error_summary},
        )

        return RunResult(run=run_model.to_dto(), duration_ms=total_duration)
