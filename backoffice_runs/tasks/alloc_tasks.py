"""
Cost allocation run task.

Contract:
    ``alloc.cost_allocation`` -- one item per active allocation rule for the
    period.  Each item evaluates its rule, stores the run lines and, in
    COMMIT mode, posts the rule's journal and locks the rule for the
    period.  A DRY_RUN previews the lines without persisting anything.

Architecture: backoffice_runs/tasks.  Imports AllocationService lazily.

Parameters:
    year, month (required; a schedule defaults them to the month before it
    fires), rule_codes (optional list), memo (optional).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from backoffice_kernel.db.types import ZERO
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import ValidationError
from backoffice_kernel.logging_config import get_logger
from backoffice_runs.domain.types import RunItemResult, RunMode
from backoffice_runs.tasks.base import (
    RunContext,
    RunItemInput,
    RunTaskResult,
    default_closed_period,
    succeeded_data,
)

logger = get_logger("runs.tasks.alloc")


class CostAllocationTask:
    """Allocates every active rule for one period."""

    def __init__(self, config=None):
        self._config = config

    @property
    def run_type(self) -> str:
        return "alloc.cost_allocation"

    @property
    def description(self) -> str:
        return "Allocate source balances to cost centers and projects"

    def _service(self, ctx: RunContext):
        from backoffice_modules.alloc.service import AllocationService

        return AllocationService(
            ctx.session,
            ctx.clock,
            config=self._config,
            auditor=ctx.auditor,
            journal=ctx.journal,
            locks=ctx.locks,
        )

    def normalize_parameters(self, parameters: dict[str, Any]) -> dict[str, Any]:
        try:
            period = Period(int(parameters["year"]), int(parameters["month"]))
        except KeyError as exc:
            raise ValidationError(str(exc.args[0]), None, "is required") from None
        rule_codes = parameters.get("rule_codes")
        return {
            "year": period.year,
            "month": period.month,
            "rule_codes": sorted(set(rule_codes)) if rule_codes else None,
            "memo": parameters.get("memo"),
        }

    def scheduled_parameters(self, stored: dict[str, Any], fired_at: datetime) -> dict[str, Any]:
        return default_closed_period(stored, fired_at)

    def precheck(
        self,
        company: str,
        mode: RunMode,
        parameters: dict[str, Any],
        ctx: RunContext,
    ) -> None:
        if not company:
            raise ValidationError("company", company, "is required")

    def prepare_items(self, ctx: RunContext) -> tuple[RunItemInput, ...]:
        params = ctx.parameters
        period = Period(ctx.parameter("year"), ctx.parameter("month"))
        service = self._service(ctx)
        rules = service.active_rules(ctx.company, period, params.get("rule_codes"))

        limit = service.config.max_rules_per_run
        if len(rules) > limit:
            raise ValidationError(
                "rules", len(rules), f"more than {limit} active rules in one run",
            )

        return tuple(
            RunItemInput(
                item_index=i,
                item_key=f"{period.key}:{rule.code}",
                payload={"rule_code": rule.code},
            )
            for i, rule in enumerate(rules)
        )

    def execute_item(self, item: RunItemInput, ctx: RunContext) -> RunTaskResult:
        from backoffice_modules.alloc.models import RuleSkipReason

        params = ctx.parameters
        period = Period(ctx.parameter("year"), ctx.parameter("month"))
        outcome = self._service(ctx).allocate_rule(
            company=ctx.company,
            period=period,
            rule_code=item.payload["rule_code"],
            run_id=ctx.run_id,
            actor_id=ctx.actor_id,
            post=not ctx.is_dry_run,
            memo=params.get("memo"),
        )

        if outcome.skip_reason == RuleSkipReason.RULE_LOCKED and ctx.is_dry_run:
            return RunTaskResult.succeeded(
                would_skip=RuleSkipReason.RULE_LOCKED.value,
                **outcome.preview(),
            )
        if outcome.skipped:
            return RunTaskResult.skipped(
                outcome.skip_reason.value,
                f"Rule {outcome.rule_code}: {outcome.skip_reason.value.lower()}",
                rule_code=outcome.rule_code,
                pool=outcome.pool,
            )
        return RunTaskResult.succeeded(**outcome.preview())

    def finalize(
        self,
        ctx: RunContext,
        results: Sequence[RunItemResult],
    ) -> dict[str, Any]:
        allocated = [d for d in succeeded_data(results) if not d.get("would_skip")]
        total = sum((Decimal(d["total"]) for d in allocated), ZERO)
        summary: dict[str, Any] = {
            "period": Period(ctx.parameter("year"), ctx.parameter("month")).key,
            "total_rules_processed": len(results),
            "rules_allocated": len(allocated),
            "total_amount_allocated": total,
            "lines": sum(len(d["lines"]) for d in allocated),
            "dry_run": ctx.is_dry_run,
        }
        if not ctx.is_dry_run:
            summary["journals_posted"] = sum(
                1 for d in allocated if d.get("journal_entry_id")
            )
        logger.info(
            "alloc_run_finalized",
            extra={
                "rules": summary["total_rules_processed"],
                "allocated": summary["rules_allocated"],
                "total": str(total),
            },
        )
        return summary
