"""
RunScheduler -- fires stored run schedules from a polling loop.

Each ``tick()`` opens one session, walks the active ``run_schedules`` rows
in name order, and for every schedule that ``should_fire`` at the clock's
current time submits and executes a run in its own savepoint.  The tick
commits once at the end.

The run's idempotency key is ``schedule-{id}-{YYYYmmdd-HHMM}``: two ticks in
the same minute (or two processes polling the same database) resolve to the
same run instead of firing twice.  Stored parameters are submitted as-is;
a schedule whose guard fails shows up as a FAILED run, never as an
exception escaping the loop.

Single process only: there is no leader election and no time zone handling
(everything is UTC).
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.logging_config import get_logger
from backoffice_runs.domain.schedule import compute_next_run, should_fire
from backoffice_runs.domain.types import JobSchedule, RunMode, RunResult, ScheduleFrequency
from backoffice_runs.models.run import RunScheduleModel
from backoffice_runs.services.executor import RunExecutor

logger = get_logger("runs.scheduler")


def schedule_idempotency_key(schedule_id: UUID, fire_time: datetime) -> str:
    return f"schedule-{schedule_id}-{fire_time:%Y%m%d-%H%M}"


class RunScheduler:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor_factory: Callable[[Session], RunExecutor],
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        tick_interval_seconds: int = 60,
    ):
        self._new_session = session_factory
        self._new_executor = executor_factory
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()
        self._interval = tick_interval_seconds
        self._stopping = threading.Event()
        self._worker: threading.Thread | None = None

    def add_schedule(
        self,
        session: Session,
        name: str,
        run_type: str,
        company: str,
        frequency: ScheduleFrequency,
        parameters: dict[str, Any] | None = None,
        mode: RunMode = RunMode.COMMIT,
        cron_expression: str | None = None,
        next_run_at: datetime | None = None,
    ) -> JobSchedule:
        """Store an active schedule.  The caller commits."""
        schedule = JobSchedule(
            schedule_id=uuid4(),
            name=name,
            run_type=run_type,
            company=company,
            frequency=frequency,
            mode=mode,
            parameters=parameters or {},
            cron_expression=cron_expression,
            next_run_at=next_run_at,
            created_by=self._actor_id,
        )
        session.add(RunScheduleModel.from_dto(schedule, created_by_id=self._actor_id))
        session.flush()
        logger.info(
            "schedule_added",
            extra={
                "schedule_id": str(schedule.schedule_id),
                "schedule_name": name,
                "run_type": run_type,
                "frequency": frequency.value,
            },
        )
        return schedule

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """One polling pass.  Returns how many schedules fired."""
        now = self._clock.now()
        with self._new_session() as session:
            executor = self._new_executor(session)
            fired = 0
            for model in self._due(session, now):
                if self._stopping.is_set():
                    break
                result = self._fire(session, executor, model, now)
                if result is not None:
                    self._reschedule(model, now, result)
                    session.flush()
                    fired += 1
            session.commit()
        return fired

    def _due(self, session: Session, now: datetime) -> list[RunScheduleModel]:
        active = session.execute(
            select(RunScheduleModel)
            .where(RunScheduleModel.is_active.is_(True))
            .order_by(RunScheduleModel.name)
        ).scalars()
        return [model for model in active if should_fire(model.to_dto(), now)]

    def _fire(
        self,
        session: Session,
        executor: RunExecutor,
        model: RunScheduleModel,
        now: datetime,
    ) -> RunResult | None:
        key = schedule_idempotency_key(model.id, now)
        if executor.find_by_key(key) is not None:
            return None

        savepoint = session.begin_nested()
        try:
            parameters = self._resolve_parameters(executor, model, now)
            run = executor.submit(
                run_type=model.run_type,
                company=model.company,
                mode=RunMode(model.mode),
                idempotency_key=key,
                actor_id=self._actor_id,
                parameters=parameters,
                correlation_id=f"schedule-{model.id}",
            )
            result = executor.execute(run.run_id, self._actor_id)
        except Exception:
            savepoint.rollback()
            logger.exception(
                "schedule_fire_failed",
                extra={"schedule_id": str(model.id), "schedule_name": model.name},
            )
            return None
        savepoint.commit()
        return result

    @staticmethod
    def _resolve_parameters(executor: RunExecutor, model: RunScheduleModel, now: datetime) -> dict:
        """Stored parameters with the fire-time defaults filled, then normalized."""
        task = executor.task_registry.get(model.run_type)
        return task.normalize_parameters(task.scheduled_parameters(dict(model.parameters or {}), now))

    def _reschedule(self, model: RunScheduleModel, now: datetime, result: RunResult) -> None:
        frequency = ScheduleFrequency(model.frequency)
        next_run = compute_next_run(
            frequency=frequency,
            last_run_at=now,
            cron_expression=model.cron_expression,
        )
        model.last_run_at = now
        model.last_run_status = result.status.value
        model.next_run_at = next_run
        model.is_active = frequency != ScheduleFrequency.ONCE
        logger.info(
            "schedule_fired",
            extra={
                "schedule_id": str(model.id),
                "schedule_name": model.name,
                "run_id": str(result.run_id),
                "status": result.status.value,
                "next_run_at": next_run.isoformat() if next_run else None,
            },
        )

    # -------------------------------------------------------------------------
    # Background thread
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Poll on a daemon thread until ``stop()``.  No-op if already running."""
        if self.is_running:
            return
        self._stopping.clear()
        self._worker = threading.Thread(target=self._loop, name="run-scheduler", daemon=True)
        self._worker.start()
        logger.info("scheduler_started", extra={"tick_interval": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stopping.set()
        if self.is_running:
            self._worker.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_failed")
            self._stopping.wait(self._interval)
