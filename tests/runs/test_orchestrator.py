"""
Tests for RunOrchestrator.run(): default keys, replay and guards.
"""

import pytest

from backoffice_kernel.exceptions import (
    RunIdempotencyError,
    RunInProgressError,
    TaskNotRegisteredError,
    ValidationError,
)
from backoffice_kernel.services.lock_service import LockKind
from backoffice_kernel.utils.idempotency import generate_idempotency_key, parameters_fingerprint
from backoffice_runs.domain.types import RunStatus
from backoffice_runs.models.run import RunModel
from backoffice_runs.orchestrator import RunOrchestrator

from tests.runs.conftest import SCRIPTED_RUN_TYPE, ScriptedTask


class TestDefaultKeys:
    def test_commit_key_from_parameters(self, make_orchestrator):
        orchestrator = make_orchestrator(ScriptedTask())
        result = orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", {"month": 1}, dry_run=False)

        expected = generate_idempotency_key(
            SCRIPTED_RUN_TYPE, "ACME", parameters_fingerprint({"month": 1})
        )
        assert result.run.idempotency_key == expected

    def test_dry_runs_always_execute(self, make_orchestrator):
        task = ScriptedTask(["ok"])
        orchestrator = make_orchestrator(task)

        first = orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", {"month": 1})
        second = orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", {"month": 1})

        assert first.run_id != second.run_id
        assert not second.replayed
        assert second.run.idempotency_key.startswith(f"{SCRIPTED_RUN_TYPE}:ACME:dry-")
        assert task.executed == ["item-0", "item-0"]

    def test_normalized_parameters_share_key(self, make_orchestrator):
        orchestrator = make_orchestrator(ScriptedTask())
        first = orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", {"month": 1}, dry_run=False)
        second = orchestrator.run(
            SCRIPTED_RUN_TYPE, "ACME", {"month": 1, "memo": None}, dry_run=False
        )
        assert second.replayed
        assert second.run_id == first.run_id


class TestReplay:
    def test_commit_repeat_replays(self, make_orchestrator, locks):
        task = ScriptedTask(["ok", "fail"])
        orchestrator = make_orchestrator(task)

        first = orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", {"month": 1}, dry_run=False)
        second = orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", {"month": 1}, dry_run=False)

        assert second.replayed is True
        assert second.run_id == first.run_id
        assert second.status == RunStatus.PARTIALLY_COMPLETED
        assert [r.item_key for r in second.item_results] == ["item-0", "item-1"]
        assert task.executed == ["item-0", "item-1"]
        assert locks.held(LockKind.ALLOC_RULE, "ACME") == ["item-0"]

    def test_explicit_key_replays(self, make_orchestrator):
        orchestrator = make_orchestrator(ScriptedTask())
        first = orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", idempotency_key="manual-1")
        second = orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", idempotency_key="manual-1")
        assert second.replayed
        assert second.run_id == first.run_id

    def test_pending_run_is_executed(self, make_orchestrator, actor_id):
        from backoffice_runs.domain.types import RunMode

        orchestrator = make_orchestrator(ScriptedTask())
        run = orchestrator.executor.submit(
            SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "pending-1", actor_id
        )

        result = orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", idempotency_key="pending-1")

        assert result.run_id == run.run_id
        assert result.replayed is False
        assert result.status == RunStatus.COMPLETED


class TestGuards:
    def test_key_owned_by_other_company(self, make_orchestrator):
        orchestrator = make_orchestrator(ScriptedTask())
        orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", idempotency_key="shared")

        with pytest.raises(RunIdempotencyError):
            orchestrator.run(SCRIPTED_RUN_TYPE, "GLOBEX", idempotency_key="shared")

    def test_running_key_raises(self, make_orchestrator, session, actor_id):
        from backoffice_runs.domain.types import RunMode

        orchestrator = make_orchestrator(ScriptedTask())
        run = orchestrator.executor.submit(
            SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "busy", actor_id
        )
        session.get(RunModel, run.run_id).status = RunStatus.RUNNING.value
        session.flush()

        with pytest.raises(RunInProgressError):
            orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", idempotency_key="busy")

    def test_precheck_error_persists_nothing(self, make_orchestrator):
        orchestrator = make_orchestrator(
            ScriptedTask(precheck_error=ValidationError("month", 13, "bad month"))
        )
        with pytest.raises(ValidationError):
            orchestrator.run(SCRIPTED_RUN_TYPE, "ACME", {"month": 13}, dry_run=False)

        key = generate_idempotency_key(
            SCRIPTED_RUN_TYPE, "ACME", parameters_fingerprint({"month": 13})
        )
        assert orchestrator.executor.find_by_key(key) is None

    def test_unknown_run_type(self, make_orchestrator):
        orchestrator = make_orchestrator(ScriptedTask())
        with pytest.raises(TaskNotRegisteredError):
            orchestrator.run("unknown.type", "ACME")


class TestDefaultRegistry:
    def test_all_module_tasks_registered(self, session, clock):
        orchestrator = RunOrchestrator.from_session(session, clock=clock)
        assert orchestrator.task_registry.list_tasks() == (
            "alloc.cost_allocation",
            "billing.invoice_run",
            "dunning.run",
            "payments.select",
            "revenue.recognition",
        )
