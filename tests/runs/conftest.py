"""
Fixtures for run executor and orchestrator tests.

``ScriptedTask`` is a RunTask whose items follow a script of outcomes.
Every item takes a lock before deciding its outcome, so tests can observe
which item effects persisted and which were rolled back.
"""

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

import pytest

from backoffice_kernel.exceptions import ValidationError
from backoffice_kernel.services.lock_service import LockKind
from backoffice_runs.domain.types import RunItemResult, RunMode
from backoffice_runs.orchestrator import RunOrchestrator
from backoffice_runs.services.executor import RunExecutor
from backoffice_runs.tasks.base import (
    RunContext,
    RunItemInput,
    RunTaskResult,
    TaskRegistry,
    succeeded_data,
)

SCRIPTED_RUN_TYPE = "test.scripted"


class ScriptedTask:
    """Outcomes: ok, skip, fail, invalid (BackofficeError), boom (RuntimeError)."""

    run_type = SCRIPTED_RUN_TYPE
    description = "Scripted test task"

    def __init__(
        self,
        outcomes: Sequence[str] = ("ok",),
        prepare_error: Exception | None = None,
        finalize_error: Exception | None = None,
        precheck_error: Exception | None = None,
    ):
        self.outcomes = tuple(outcomes)
        self.prepare_error = prepare_error
        self.finalize_error = finalize_error
        self.precheck_error = precheck_error
        self.executed: list[str] = []

    def normalize_parameters(self, parameters: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in parameters.items() if v is not None}

    def scheduled_parameters(self, stored: dict[str, Any], fired_at: datetime) -> dict[str, Any]:
        return stored

    def precheck(
        self,
        company: str,
        mode: RunMode,
        parameters: dict[str, Any],
        ctx: RunContext,
    ) -> None:
        if self.precheck_error is not None:
            raise self.precheck_error

    def prepare_items(self, ctx: RunContext) -> tuple[RunItemInput, ...]:
        if self.prepare_error is not None:
            raise self.prepare_error
        return tuple(
            RunItemInput(i, f"item-{i}", {"outcome": outcome})
            for i, outcome in enumerate(self.outcomes)
        )

    def execute_item(self, item: RunItemInput, ctx: RunContext) -> RunTaskResult:
        self.executed.append(item.item_key)
        ctx.locks.acquire(
            LockKind.ALLOC_RULE, ctx.company, item.item_key, ctx.actor_id, run_id=ctx.run_id
        )
        outcome = item.payload["outcome"]
        if outcome == "ok":
            return RunTaskResult.succeeded(amount=Decimal("10.50"), key=item.item_key)
        if outcome == "skip":
            return RunTaskResult.skipped("NOTHING_TO_DO", "nothing to do")
        if outcome == "fail":
            return RunTaskResult.failed("SCRIPTED_FAILURE", "scripted failure")
        if outcome == "invalid":
            raise ValidationError("outcome", outcome, "scripted validation error")
        raise RuntimeError("scripted crash")

    def finalize(self, ctx: RunContext, results: Sequence[RunItemResult]) -> dict[str, Any]:
        if self.finalize_error is not None:
            raise self.finalize_error
        done = succeeded_data(results)
        ctx.locks.acquire(LockKind.REVENUE_PERIOD, ctx.company, "finalized", ctx.actor_id)
        return {
            "items": len(results),
            "total": sum((Decimal(d["amount"]) for d in done), Decimal("0")),
            "dry_run": ctx.is_dry_run,
        }


@pytest.fixture
def make_registry():
    def _make(*tasks) -> TaskRegistry:
        registry = TaskRegistry()
        for task in tasks:
            registry.register(task)
        return registry

    return _make


@pytest.fixture
def make_executor(session, clock, auditor, journal, locks, make_registry):
    def _make(*tasks) -> RunExecutor:
        return RunExecutor(
            session=session,
            task_registry=make_registry(*tasks),
            clock=clock,
            auditor_service=auditor,
            journal_service=journal,
            lock_service=locks,
        )

    return _make


@pytest.fixture
def make_orchestrator(session, clock, actor_id, make_registry):
    def _make(*tasks) -> RunOrchestrator:
        return RunOrchestrator.from_session(
            session,
            clock=clock,
            actor_id=actor_id,
            task_registry=make_registry(*tasks),
        )

    return _make
