"""
Tests for RunExecutor.

Covers:
- Submit with idempotency key uniqueness
- SAVEPOINT isolation per item
- Run status derivation from item outcomes
- Dry-run rollback of every domain effect
- prepare/finalize failures
- Cancel and queries
"""

from uuid import uuid4

import pytest

from backoffice_kernel.exceptions import (
    RunIdempotencyError,
    RunInProgressError,
    RunNotFoundError,
    RunStateError,
    TaskNotRegisteredError,
)
from backoffice_kernel.services.lock_service import LockKind
from backoffice_runs.domain.types import RunItemStatus, RunMode, RunStatus
from backoffice_runs.models.run import RunModel
from backoffice_runs.tasks.dunning_tasks import DunningRunTask

from tests.runs.conftest import SCRIPTED_RUN_TYPE, ScriptedTask


def _submit_and_execute(executor, actor_id, mode=RunMode.COMMIT, key=None):
    run = executor.submit(
        run_type=SCRIPTED_RUN_TYPE,
        company="ACME",
        mode=mode,
        idempotency_key=key or f"test:{uuid4()}",
        actor_id=actor_id,
    )
    return executor.execute(run.run_id, actor_id)


class TestSubmit:
    def test_submit_creates_pending_run(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask())
        run = executor.submit(
            run_type=SCRIPTED_RUN_TYPE,
            company="ACME",
            mode=RunMode.COMMIT,
            idempotency_key="k-1",
            actor_id=actor_id,
            parameters={"year": 2026},
        )

        assert run.status == RunStatus.PENDING
        assert run.seq == 1
        assert executor.find_by_key("k-1").run_id == run.run_id
        assert executor.get_run(run.run_id).parameters == {"year": 2026}

    def test_duplicate_key_rejected(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask())
        executor.submit(SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "k-1", actor_id)

        with pytest.raises(RunIdempotencyError):
            executor.submit(SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "k-1", actor_id)

    def test_unknown_run_type_rejected(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask())
        with pytest.raises(TaskNotRegisteredError):
            executor.submit("nope", "ACME", RunMode.COMMIT, "k-1", actor_id)

    def test_seq_is_monotonic(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask())
        first = executor.submit(SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "k-1", actor_id)
        second = executor.submit(SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "k-2", actor_id)
        assert second.seq > first.seq


class TestRunStatus:
    def test_all_succeeded_completes(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask(["ok", "ok"]))
        result = _submit_and_execute(executor, actor_id)

        assert result.status == RunStatus.COMPLETED
        assert result.succeeded == 2
        assert result.run.total_items == 2
        assert result.run.error_summary is None

    def test_mixed_outcomes_partially_complete(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask(["ok", "fail", "skip"]))
        result = _submit_and_execute(executor, actor_id)

        assert result.status == RunStatus.PARTIALLY_COMPLETED
        assert (result.succeeded, result.failed, result.skipped) == (1, 1, 1)
        assert result.run.error_summary == "1 item(s) failed"

    def test_all_failed_fails(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask(["fail", "boom"]))
        result = _submit_and_execute(executor, actor_id)

        assert result.status == RunStatus.FAILED
        assert result.run.error_summary == "2 item(s) failed"

    def test_only_skips_is_partial(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask(["skip"]))
        result = _submit_and_execute(executor, actor_id)
        assert result.status == RunStatus.PARTIALLY_COMPLETED

    def test_no_items_completes(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask([]))
        result = _submit_and_execute(executor, actor_id)

        assert result.status == RunStatus.COMPLETED
        assert result.run.total_items == 0

    def test_error_codes_recorded(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask(["invalid", "boom", "fail"]))
        result = _submit_and_execute(executor, actor_id)

        codes = [r.error_code for r in result.item_results]
        assert codes == ["VALIDATION_ERROR", "UNHANDLED_EXCEPTION", "SCRIPTED_FAILURE"]

    def test_failure_does_not_stop_later_items(self, make_executor, actor_id):
        task = ScriptedTask(["boom", "ok"])
        executor = make_executor(task)
        result = _submit_and_execute(executor, actor_id)

        assert task.executed == ["item-0", "item-1"]
        assert result.item_results[1].status == RunItemStatus.SUCCEEDED


class TestSavepointIsolation:
    def test_failed_item_effects_rolled_back(self, make_executor, locks, actor_id):
        executor = make_executor(ScriptedTask(["ok", "boom", "fail", "skip"]))
        _submit_and_execute(executor, actor_id)

        assert locks.held(LockKind.ALLOC_RULE, "ACME") == ["item-0"]

    def test_finalize_effects_persist_on_commit(self, make_executor, locks, actor_id):
        executor = make_executor(ScriptedTask(["ok"]))
        _submit_and_execute(executor, actor_id)
        assert locks.is_locked(LockKind.REVENUE_PERIOD, "ACME", "finalized")


class TestDryRun:
    def test_no_domain_effects_persist(self, make_executor, locks, actor_id):
        executor = make_executor(ScriptedTask(["ok", "ok"]))
        result = _submit_and_execute(executor, actor_id, mode=RunMode.DRY_RUN)

        assert result.status == RunStatus.COMPLETED
        assert result.run.is_dry_run
        assert locks.held(LockKind.ALLOC_RULE, "ACME") == []
        assert not locks.is_locked(LockKind.REVENUE_PERIOD, "ACME", "finalized")

    def test_dry_run_still_reports_preview(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask(["ok", "ok"]))
        result = _submit_and_execute(executor, actor_id, mode=RunMode.DRY_RUN)

        assert result.summary == {"items": 2, "total": "21", "dry_run": True}
        assert result.item_results[0].result_data == {"amount": "10.5", "key": "item-0"}

    def test_dry_run_with_only_skips_completes(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask(["skip"]))
        result = _submit_and_execute(executor, actor_id, mode=RunMode.DRY_RUN)
        assert result.status == RunStatus.COMPLETED

    def test_run_record_persists(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask(["ok"]))
        result = _submit_and_execute(executor, actor_id, mode=RunMode.DRY_RUN)

        assert executor.get_run(result.run_id).status == RunStatus.COMPLETED
        assert len(executor.get_run_items(result.run_id)) == 1


class TestPrepareAndFinalizeFailures:
    def test_prepare_failure_fails_run(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask(prepare_error=RuntimeError("no data")))
        result = _submit_and_execute(executor, actor_id)

        assert result.status == RunStatus.FAILED
        assert result.run.error_summary == "prepare_items failed: no data"
        assert result.item_results == ()

    def test_missing_parameter_fails_run_with_validation_error(self, make_executor, actor_id):
        executor = make_executor(DunningRunTask())
        run = executor.submit("dunning.run", "ACME", RunMode.COMMIT, f"test:{uuid4()}", actor_id)

        result = executor.execute(run.run_id, actor_id)

        assert result.status == RunStatus.FAILED
        assert result.run.error_summary == "prepare_items failed: Invalid as_of=None: is required"

    def test_finalize_failure_rolls_back_items(self, make_executor, locks, actor_id):
        executor = make_executor(
            ScriptedTask(["ok", "ok"], finalize_error=RuntimeError("posting failed"))
        )
        result = _submit_and_execute(executor, actor_id)

        assert result.status == RunStatus.FAILED
        assert result.run.error_summary == "finalize failed: posting failed"
        assert locks.held(LockKind.ALLOC_RULE, "ACME") == []
        assert len(executor.get_run_items(result.run_id)) == 2


class TestExecuteGuards:
    def test_unknown_run(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask())
        with pytest.raises(RunNotFoundError):
            executor.execute(uuid4(), actor_id)

    def test_cannot_execute_twice(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask())
        result = _submit_and_execute(executor, actor_id)

        with pytest.raises(RunStateError):
            executor.execute(result.run_id, actor_id)

    def test_single_runner_per_type_and_company(self, make_executor, session, actor_id):
        executor = make_executor(ScriptedTask())
        first = executor.submit(SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "k-1", actor_id)
        session.get(RunModel, first.run_id).status = RunStatus.RUNNING.value
        session.flush()
        second = executor.submit(SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "k-2", actor_id)

        with pytest.raises(RunInProgressError):
            executor.execute(second.run_id, actor_id)

    def test_other_company_may_run(self, make_executor, session, actor_id):
        executor = make_executor(ScriptedTask())
        first = executor.submit(SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "k-1", actor_id)
        session.get(RunModel, first.run_id).status = RunStatus.RUNNING.value
        session.flush()
        other = executor.submit(SCRIPTED_RUN_TYPE, "GLOBEX", RunMode.COMMIT, "k-2", actor_id)

        assert executor.execute(other.run_id, actor_id).status == RunStatus.COMPLETED


class TestCancel:
    def test_cancel_pending(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask())
        run = executor.submit(SCRIPTED_RUN_TYPE, "ACME", RunMode.COMMIT, "k-1", actor_id)

        cancelled = executor.cancel(run.run_id, "operator request", actor_id)

        assert cancelled.status == RunStatus.CANCELLED
        assert cancelled.error_summary == "Cancelled: operator request"

    def test_cannot_cancel_finished(self, make_executor, actor_id):
        executor = make_executor(ScriptedTask())
        result = _submit_and_execute(executor, actor_id)

        with pytest.raises(RunStateError):
            executor.cancel(result.run_id, "too late", actor_id)


class TestRunAudit:
    def test_lifecycle_audited(self, make_executor, auditor, actor_id):
        executor = make_executor(ScriptedTask(["ok"]))
        result = _submit_and_execute(executor, actor_id)

        trace = auditor.get_trace("Run", result.run_id)
        assert trace.actions == ("run_submitted", "run_started", "run_completed")
        assert auditor.validate_chain()

    def test_failed_run_audited(self, make_executor, auditor, actor_id):
        executor = make_executor(ScriptedTask(["fail"]))
        result = _submit_and_execute(executor, actor_id)
        assert auditor.get_trace("Run", result.run_id).last_action == "run_failed"

    def test_dry_run_keeps_chain_valid(self, make_executor, auditor, actor_id):
        executor = make_executor(ScriptedTask(["ok", "fail"]))
        _submit_and_execute(executor, actor_id, mode=RunMode.DRY_RUN)
        assert auditor.validate_chain()


class TestRunLogging:
    def test_run_context_bound_in_logs(self, make_executor, actor_id, captured_logs):
        executor = make_executor(ScriptedTask(["ok"]))
        result = _submit_and_execute(executor, actor_id)

        completed = [r for r in captured_logs() if r["message"] == "run_completed"]
        assert completed[-1]["run_id"] == str(result.run_id)
        assert completed[-1]["run_type"] == SCRIPTED_RUN_TYPE
        assert completed[-1]["status"] == "COMPLETED"
