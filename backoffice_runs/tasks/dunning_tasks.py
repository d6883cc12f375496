"""
Dunning run task.

Contract:
    ``dunning.run`` -- one item per overdue (customer, bucket) group as of
    the ``as_of`` date.  Each item walks the group's policy steps and logs
    the reminders it sends.  A DRY_RUN reports the reminders that would go
    out without logging them.

Architecture: backoffice_runs/tasks.  Imports DunningService lazily.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

from backoffice_kernel.exceptions import ValidationError
from backoffice_kernel.logging_config import get_logger
from backoffice_runs.domain.types import RunItemResult, RunItemStatus, RunMode
from backoffice_runs.tasks.base import (
    RunContext,
    RunItemInput,
    RunTaskResult,
    succeeded_data,
)

logger = get_logger("runs.tasks.dunning")


class DunningRunTask:
    """Sends dunning reminders for overdue receivables."""

    def __init__(self, config=None):
        self._config = config

    @property
    def run_type(self) -> str:
        return "dunning.run"

    @property
    def description(self) -> str:
        return "Send payment reminders per customer and aging bucket"

    def _service(self, ctx: RunContext):
        from backoffice_modules.dunning.service import DunningService

        return DunningService(
            ctx.session, ctx.clock, config=self._config, auditor=ctx.auditor,
        )

    def normalize_parameters(self, parameters: dict[str, Any]) -> dict[str, Any]:
        as_of = parameters.get("as_of")
        if as_of is None:
            raise ValidationError("as_of", as_of, "is required")
        if not isinstance(as_of, date):
            as_of = date.fromisoformat(str(as_of))
        return {"as_of": as_of.isoformat()}

    def scheduled_parameters(self, stored: dict[str, Any], fired_at: datetime) -> dict[str, Any]:
        """A scheduled dunning run looks at receivables as of its fire date."""
        if stored.get("as_of") is not None:
            return stored
        return {**stored, "as_of": fired_at.date()}

    def precheck(
        self,
        company: str,
        mode: RunMode,
        parameters: dict[str, Any],
        ctx: RunContext,
    ) -> None:
        if date.fromisoformat(parameters["as_of"]) > ctx.clock.today():
            raise ValidationError("as_of", parameters["as_of"], "is in the future")

    def prepare_items(self, ctx: RunContext) -> tuple[RunItemInput, ...]:
        service = self._service(ctx)
        groups = service.aged_groups(ctx.company, date.fromisoformat(ctx.parameter("as_of")))

        limit = service.config.max_groups_per_run
        if len(groups) > limit:
            raise ValidationError(
                "groups", len(groups), f"more than {limit} dunning groups in one run",
            )

        return tuple(
            RunItemInput(
                item_index=i,
                item_key=f"{customer}:{bucket}",
                payload={"customer": customer, "bucket": bucket, "items": items},
            )
            for i, ((customer, bucket), items) in enumerate(groups.items())
        )

    def execute_item(self, item: RunItemInput, ctx: RunContext) -> RunTaskResult:
        outcome = self._service(ctx).process_group(
            company=ctx.company,
            customer_code=item.payload["customer"],
            bucket=item.payload["bucket"],
            as_of=date.fromisoformat(ctx.parameter("as_of")),
            run_id=ctx.run_id,
            actor_id=ctx.actor_id,
            items=item.payload.get("items"),
        )
        if outcome.skip_reason is not None:
            return RunTaskResult.skipped(
                outcome.skip_reason.value,
                f"{outcome.customer_code} {outcome.bucket}: "
                f"{outcome.skip_reason.value.lower()}",
                **outcome.preview(),
            )
        return RunTaskResult.succeeded(**outcome.preview())

    def finalize(
        self,
        ctx: RunContext,
        results: Sequence[RunItemResult],
    ) -> dict[str, Any]:
        sent = succeeded_data(results)
        processed = [
            r for r in results if r.status != RunItemStatus.FAILED
        ]
        summary = {
            "as_of": ctx.parameter("as_of"),
            "customers_processed": len({r.item_key.split(":", 1)[0] for r in processed}),
            "groups_processed": len(processed),
            "emails_sent": sum(d["emails"] for d in sent),
            "webhooks_sent": sum(d["webhooks"] for d in sent),
            "errors": sum(1 for r in results if r.status == RunItemStatus.FAILED),
            "dry_run": ctx.is_dry_run,
        }
        logger.info(
            "dunning_run_finalized",
            extra={
                "emails_sent": summary["emails_sent"],
                "webhooks_sent": summary["webhooks_sent"],
                "errors": summary["errors"],
            },
        )
        return summary
