"""
Billing run task.

Contract:
    ``billing.invoice_run`` -- one item per ACTIVE subscription whose bill
    anchor falls in ``[period_start, period_end]``.  Each item rates the
    subscription and stores a DRAFT invoice.

Architecture: backoffice_runs/tasks.  Imports BillingService lazily.

Parameters:
    period_start, period_end (ISO dates, required; a schedule defaults them
    to the month before it fires), present_ccy (optional,
    defaults to the configured presentation currency).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from backoffice_kernel.db.types import ZERO, validate_currency
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import ValidationError
from backoffice_kernel.logging_config import get_logger
from backoffice_runs.domain.types import RunItemResult, RunMode
from backoffice_runs.tasks.base import (
    RunContext,
    RunItemInput,
    RunTaskResult,
    succeeded_data,
)

logger = get_logger("runs.tasks.billing")


def _as_date(value: Any, name: str) -> date:
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError(name, value, "is required")
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(name, value, "expected an ISO date") from exc


class InvoiceRunTask:
    """Creates DRAFT invoices for the subscriptions due in a period."""

    def __init__(self, config=None):
        self._config = config

    @property
    def run_type(self) -> str:
        return "billing.invoice_run"

    @property
    def description(self) -> str:
        return "Rate due subscriptions into draft invoices"

    def _service(self, ctx: RunContext):
        from backoffice_modules.billing.service import BillingService

        return BillingService(
            ctx.session,
            ctx.clock,
            config=self._config,
            auditor=ctx.auditor,
            journal=ctx.journal,
            locks=ctx.locks,
        )

    def normalize_parameters(self, parameters: dict[str, Any]) -> dict[str, Any]:
        start = _as_date(parameters.get("period_start"), "period_start")
        end = _as_date(parameters.get("period_end"), "period_end")
        present_ccy = parameters.get("present_ccy") or (
            self._config.default_present_ccy if self._config else "USD"
        )
        return {
            "period_start": start.isoformat(),
            "period_end": end.isoformat(),
            "present_ccy": present_ccy,
        }

    def scheduled_parameters(self, stored: dict[str, Any], fired_at: datetime) -> dict[str, Any]:
        """Without stored dates a schedule bills the month before it fires."""
        if stored.get("period_start") or stored.get("period_end"):
            return stored
        closed = Period.of(fired_at.date()).previous()
        return {**stored, "period_start": closed.first_day, "period_end": closed.last_day}

    def precheck(
        self,
        company: str,
        mode: RunMode,
        parameters: dict[str, Any],
        ctx: RunContext,
    ) -> None:
        if date.fromisoformat(parameters["period_end"]) < date.fromisoformat(
            parameters["period_start"]
        ):
            raise ValidationError(
                "period_end", parameters["period_end"], "is before period_start",
            )
        validate_currency(parameters["present_ccy"])

    def prepare_items(self, ctx: RunContext) -> tuple[RunItemInput, ...]:
        subscriptions = self._service(ctx).due_subscriptions(
            ctx.company,
            date.fromisoformat(ctx.parameter("period_start")),
            date.fromisoformat(ctx.parameter("period_end")),
        )
        return tuple(
            RunItemInput(
                item_index=i,
                item_key=f"{sub.customer_id}:{sub.subscription_id}",
                payload={"subscription_id": str(sub.subscription_id)},
            )
            for i, sub in enumerate(subscriptions)
        )

    def execute_item(self, item: RunItemInput, ctx: RunContext) -> RunTaskResult:
        outcome = self._service(ctx).bill_subscription(
            subscription_id=UUID(item.payload["subscription_id"]),
            period_start=date.fromisoformat(ctx.parameter("period_start")),
            period_end=date.fromisoformat(ctx.parameter("period_end")),
            present_ccy=ctx.parameter("present_ccy"),
            run_id=ctx.run_id,
            actor_id=ctx.actor_id,
        )
        if outcome.skipped:
            return RunTaskResult.skipped(
                outcome.skip_reason.value,
                f"Subscription {outcome.subscription_id}: "
                f"{outcome.skip_reason.value.lower()}",
                customer_id=outcome.customer_id,
            )
        return RunTaskResult.succeeded(**outcome.preview())

    def finalize(
        self,
        ctx: RunContext,
        results: Sequence[RunItemResult],
    ) -> dict[str, Any]:
        invoices = succeeded_data(results)
        total = sum((Decimal(d["total"]) for d in invoices), ZERO)
        summary = {
            "invoices_created": len(invoices),
            "total_amount": total,
            "currency": ctx.parameter("present_ccy"),
            "customers": sorted({d["customer_id"] for d in invoices}),
            "dry_run": ctx.is_dry_run,
        }
        logger.info(
            "billing_run_finalized",
            extra={"invoices": len(invoices), "total": str(total)},
        )
        return summary
