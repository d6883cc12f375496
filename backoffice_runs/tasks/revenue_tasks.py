"""
Revenue recognition run task.

Contract:
    ``revenue.recognition`` -- one item per open (PLANNED or PARTIAL)
    schedule row of the period.  Each item books the row's outstanding
    amount; ``finalize`` posts every booked line as one journal in COMMIT
    mode and locks the period.  A DRY_RUN previews the lines only.

Architecture: backoffice_runs/tasks.  Imports RevenueService lazily.

Parameters:
    year, month (required; a schedule defaults them to the month before it
    fires).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

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

logger = get_logger("runs.tasks.revenue")


class RevenueRecognitionTask:
    """Recognizes scheduled revenue for one period."""

    def __init__(self, config=None):
        self._config = config

    @property
    def run_type(self) -> str:
        return "revenue.recognition"

    @property
    def description(self) -> str:
        return "Recognize scheduled revenue for a period"

    def _service(self, ctx: RunContext):
        from backoffice_modules.revenue.service import RevenueService

        return RevenueService(
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
        return {"year": period.year, "month": period.month}

    def scheduled_parameters(self, stored: dict[str, Any], fired_at: datetime) -> dict[str, Any]:
        """A monthly schedule recognizes the month that just closed."""
        return default_closed_period(stored, fired_at)

    def _check(self, service, company: str, period: Period, mode: RunMode) -> None:
        service.get_policy(company)
        if mode == RunMode.COMMIT:
            service.check_period_open(company, period)

    def precheck(
        self,
        company: str,
        mode: RunMode,
        parameters: dict[str, Any],
        ctx: RunContext,
    ) -> None:
        period = Period(parameters["year"], parameters["month"])
        self._check(self._service(ctx), company, period, mode)

    def prepare_items(self, ctx: RunContext) -> tuple[RunItemInput, ...]:
        period = Period(ctx.parameter("year"), ctx.parameter("month"))
        service = self._service(ctx)
        # A scheduled or resumed run may start after the period was posted.
        self._check(service, ctx.company, period, ctx.mode)

        return tuple(
            RunItemInput(
                item_index=i,
                item_key=f"{row.pob.contract_id}:{row.pob_id}:{period.key}",
                payload={"schedule_id": str(row.id)},
            )
            for i, row in enumerate(service.open_schedules(ctx.company, period))
        )

    def execute_item(self, item: RunItemInput, ctx: RunContext) -> RunTaskResult:
        line = self._service(ctx).recognize_schedule(
            UUID(item.payload["schedule_id"]), ctx.run_id, ctx.actor_id,
        )
        if line is None:
            return RunTaskResult.skipped(
                "NOTHING_TO_RECOGNIZE", f"Schedule {item.item_key} is fully recognized",
            )
        return RunTaskResult.succeeded(**line.preview())

    def finalize(
        self,
        ctx: RunContext,
        results: Sequence[RunItemResult],
    ) -> dict[str, Any]:
        from backoffice_modules.revenue.models import RecognitionKind, RecognitionLine

        period = Period(ctx.parameter("year"), ctx.parameter("month"))
        lines = [
            RecognitionLine(
                schedule_id=UUID(d["schedule_id"]),
                pob_id=UUID(d["pob_id"]),
                contract_id=d["contract_id"],
                period=d["period"],
                amount=Decimal(d["amount"]),
                kind=RecognitionKind(d["kind"]),
                dr_account=d["dr_account"],
                cr_account=d["cr_account"],
            )
            for d in succeeded_data(results)
        ]

        def total_of(kind: RecognitionKind | None = None) -> Decimal:
            return sum(
                (line.amount for line in lines if kind is None or line.kind == kind), ZERO,
            )

        summary: dict[str, Any] = {
            "period": period.key,
            "pobs_processed": len({line.pob_id for line in lines}),
            "lines_created": len(lines),
            "total_amount": total_of(),
            "unbilled_ar_amount": total_of(RecognitionKind.UNBILLED_AR),
            "deferred_rev_amount": total_of(RecognitionKind.DEFERRED),
            "revenue_amount": total_of(),
            "journal_entry_id": None,
            "dry_run": ctx.is_dry_run,
        }

        if not ctx.is_dry_run and lines:
            posted = self._service(ctx).post_recognition(
                ctx.company, period, lines, ctx.run_id, ctx.actor_id,
            )
            summary["journal_entry_id"] = posted.entry_id

        logger.info(
            "revenue_run_finalized",
            extra={
                "period": period.key,
                "lines": len(lines),
                "total": str(summary["total_amount"]),
            },
        )
        return summary
