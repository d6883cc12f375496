"""
RunOrchestrator -- DI container and entry point for back-office runs.

Contract:
    Wires TaskRegistry with the module run tasks, creates RunExecutor and
    RunScheduler, and offers ``run()``: validate, dedupe by idempotency
    key, submit and execute in one call.

Architecture: backoffice_runs (top-level).  The canonical entry point for
    cost allocation, billing, payment selection, dunning and revenue
    recognition runs.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - A COMMIT request executes at most once per idempotency key; repeats
      replay the stored result.
    - Service-level guards (``precheck``) raise before anything persists.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.exceptions import RunIdempotencyError, RunInProgressError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.services.auditor_service import AuditorService
from backoffice_kernel.services.journal_service import JournalService
from backoffice_kernel.services.lock_service import RunLockService
from backoffice_kernel.services.sequence_service import SequenceService
from backoffice_kernel.utils.idempotency import (
    generate_idempotency_key,
    parameters_fingerprint,
)
from backoffice_runs.domain.types import RunMode, RunResult, RunStatus
from backoffice_runs.services.executor import RunExecutor
from backoffice_runs.services.scheduler import RunScheduler
from backoffice_runs.tasks.base import TaskRegistry

if TYPE_CHECKING:
    from backoffice_config.settings import BackofficeSettings

logger = get_logger("runs.orchestrator")


def _default_task_registry(settings: BackofficeSettings | None = None) -> TaskRegistry:
    """A TaskRegistry pre-loaded with every module run task."""
    from backoffice_runs.tasks.alloc_tasks import CostAllocationTask
    from backoffice_runs.tasks.billing_tasks import InvoiceRunTask
    from backoffice_runs.tasks.dunning_tasks import DunningRunTask
    from backoffice_runs.tasks.payment_tasks import PaymentSelectionTask
    from backoffice_runs.tasks.revenue_tasks import RevenueRecognitionTask

    registry = TaskRegistry()
    registry.register(CostAllocationTask(settings.alloc if settings else None))
    registry.register(InvoiceRunTask(settings.billing if settings else None))
    registry.register(PaymentSelectionTask(settings.payments if settings else None))
    registry.register(DunningRunTask(settings.dunning if settings else None))
    registry.register(RevenueRecognitionTask(settings.revenue if settings else None))
    return registry


class RunOrchestrator:
    """DI container for the run system.

    Contract:
        - ``from_session()`` factory creates a fully wired orchestrator.
        - ``run()`` and the per-module shortcuts submit + execute a run.
        - ``create_executor()`` / ``create_scheduler()`` for lower-level use.

    Non-goals:
        - Does NOT start the scheduler automatically; the caller decides.
        - Does NOT commit; the caller controls the transaction.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        auditor_service: AuditorService | None = None,
        sequence_service: SequenceService | None = None,
        actor_id: UUID | None = None,
    ) -> None:
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._auditor = auditor_service or AuditorService(
            session=session, clock=self._clock,
        )
        self._sequence = sequence_service or SequenceService(session)
        self._actor_id = actor_id or uuid4()
        self._executor = self.create_executor()

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        task_registry: TaskRegistry | None = None,
        settings: BackofficeSettings | None = None,
    ) -> RunOrchestrator:
        """Create a fully wired orchestrator.

        Args:
            session: SQLAlchemy session for persistence.
            clock: Optional clock for deterministic testing.
            actor_id: Actor UUID for audit attribution.
            task_registry: Optional pre-configured registry.  If None, the
                default registry with all module tasks is used.
            settings: Optional loaded settings; module configs are handed
                to the default tasks.
        """
        effective_clock = clock or SystemClock()
        registry = (
            task_registry
            if task_registry is not None
            else _default_task_registry(settings)
        )

        return cls(
            session=session,
            task_registry=registry,
            clock=effective_clock,
            auditor_service=AuditorService(session=session, clock=effective_clock),
            sequence_service=SequenceService(session),
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Executor
    # -------------------------------------------------------------------------

    def create_executor(self, session: Session | None = None) -> RunExecutor:
        """A RunExecutor wired with the orchestrator's dependencies.

        Args:
            session: Optional session override.  If None, the
                orchestrator's session is used.
        """
        target_session = session or self._session
        auditor = (
            AuditorService(session=target_session, clock=self._clock)
            if session is not None
            else self._auditor
        )
        return RunExecutor(
            session=target_session,
            task_registry=self._task_registry,
            clock=self._clock,
            auditor_service=auditor,
            sequence_service=(
                SequenceService(target_session)
                if session is not None
                else self._sequence
            ),
            journal_service=JournalService(target_session, auditor, self._clock),
            lock_service=RunLockService(target_session, auditor, self._clock),
        )

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    def create_scheduler(
        self,
        session_factory: Callable[[], Session],
        tick_interval_seconds: int = 60,
    ) -> RunScheduler:
        """A RunScheduler whose executors share this orchestrator's registry and clock."""
        clock = self._clock
        registry = self._task_registry

        def executor_factory(session: Session) -> RunExecutor:
            return RunExecutor(
                session=session,
                task_registry=registry,
                clock=clock,
            )

        return RunScheduler(
            session_factory=session_factory,
            executor_factory=executor_factory,
            clock=clock,
            actor_id=self._actor_id,
            tick_interval_seconds=tick_interval_seconds,
        )

    # -------------------------------------------------------------------------
    # Run entry point
    # -------------------------------------------------------------------------

    def run(
        self,
        run_type: str,
        company: str,
        parameters: dict[str, Any] | None = None,
        dry_run: bool = True,
        idempotency_key: str | None = None,
        correlation_id: str | None = None,
    ) -> RunResult:
        """Submit and execute a run, or replay the run that owns the key.

        Default keys: a COMMIT request is keyed on (run_type, company,
        parameter fingerprint) so an identical request replays; a DRY_RUN
        gets a fresh key so every preview executes.

        Raises:
            TaskNotRegisteredError: Unknown run_type.
            RunIdempotencyError: The key belongs to a different run type or
                company.
            RunInProgressError: The key's run, or another run of the same
                type for the company, is RUNNING.
            BackofficeError: Whatever the task's precheck raises.
        """
        task = self._task_registry.get(run_type)
        mode = RunMode.DRY_RUN if dry_run else RunMode.COMMIT
        params = task.normalize_parameters(dict(parameters or {}))

        if idempotency_key is None:
            discriminator = (
                parameters_fingerprint(params)
                if mode == RunMode.COMMIT
                else f"dry-{uuid4().hex}"
            )
            idempotency_key = generate_idempotency_key(run_type, company, discriminator)

        existing = self._executor.find_by_key(idempotency_key)
        if existing is not None:
            if existing.run_type != run_type or existing.company != company:
                raise RunIdempotencyError(idempotency_key, str(existing.run_id))
            if existing.status == RunStatus.RUNNING:
                raise RunInProgressError(run_type, company, str(existing.run_id))
            if existing.status != RunStatus.PENDING:
                logger.info(
                    "run_replayed",
                    extra={
                        "run_id": str(existing.run_id),
                        "run_type": run_type,
                        "company": company,
                        "idempotency_key": idempotency_key,
                        "status": existing.status.value,
                    },
                )
                return RunResult(
                    run=existing,
                    item_results=self._executor.get_run_items(existing.run_id),
                    replayed=True,
                )
            return self._executor.execute(existing.run_id, self._actor_id)

        task.precheck(company, mode, params, self._executor.context(self._actor_id))

        run = self._executor.submit(
            run_type=run_type,
            company=company,
            mode=mode,
            idempotency_key=idempotency_key,
            actor_id=self._actor_id,
            parameters=params,
            correlation_id=correlation_id,
        )
        return self._executor.execute(run.run_id, self._actor_id)

    # -------------------------------------------------------------------------
    # Module shortcuts
    # -------------------------------------------------------------------------

    def run_allocation(
        self,
        company: str,
        year: int,
        month: int,
        dry_run: bool = True,
        rule_codes: list[str] | None = None,
        memo: str | None = None,
        idempotency_key: str | None = None,
    ) -> RunResult:
        return self.run(
            "alloc.cost_allocation",
            company,
            {"year": year, "month": month, "rule_codes": rule_codes, "memo": memo},
            dry_run=dry_run,
            idempotency_key=idempotency_key,
        )

    def run_billing(
        self,
        company: str,
        period_start: date,
        period_end: date,
        present_ccy: str | None = None,
        dry_run: bool = True,
        idempotency_key: str | None = None,
    ) -> RunResult:
        return self.run(
            "billing.invoice_run",
            company,
            {
                "period_start": period_start,
                "period_end": period_end,
                "present_ccy": present_ccy,
            },
            dry_run=dry_run,
            idempotency_key=idempotency_key,
        )

    def select_payments(
        self,
        company: str,
        pay_run_id: UUID,
        suppliers: list[str] | None = None,
        due_on_or_before: date | None = None,
        min_amount: Decimal | None = None,
        dry_run: bool = True,
        idempotency_key: str | None = None,
    ) -> RunResult:
        return self.run(
            "payments.select",
            company,
            {
                "pay_run_id": pay_run_id,
                "suppliers": suppliers,
                "due_on_or_before": due_on_or_before,
                "min_amount": min_amount,
            },
            dry_run=dry_run,
            idempotency_key=idempotency_key,
        )

    def run_dunning(
        self,
        company: str,
        as_of: date | None = None,
        dry_run: bool = True,
        idempotency_key: str | None = None,
    ) -> RunResult:
        return self.run(
            "dunning.run",
            company,
            {"as_of": as_of or self._clock.today()},
            dry_run=dry_run,
            idempotency_key=idempotency_key,
        )

    def recognize_revenue(
        self,
        company: str,
        year: int,
        month: int,
        dry_run: bool = True,
        idempotency_key: str | None = None,
    ) -> RunResult:
        return self.run(
            "revenue.recognition",
            company,
            {"year": year, "month": month},
            dry_run=dry_run,
            idempotency_key=idempotency_key,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def executor(self) -> RunExecutor:
        return self._executor

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def actor_id(self) -> UUID:
        return self._actor_id
