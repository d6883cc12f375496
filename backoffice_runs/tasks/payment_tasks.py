"""
Payment selection run task.

Contract:
    ``payments.select`` -- one item per OPEN AP invoice matching the
    filters, in (due_date, supplier) order.  Each item adds the invoice to
    a DRAFT pay run and takes its ``ap_invoice`` lock.

Architecture: backoffice_runs/tasks.  Imports PaymentsService lazily.

Parameters:
    pay_run_id (required), suppliers, due_on_or_before, min_amount.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from backoffice_kernel.db.types import ZERO, to_decimal
from backoffice_kernel.exceptions import ValidationError
from backoffice_kernel.logging_config import get_logger
from backoffice_runs.domain.types import RunItemResult, RunItemStatus, RunMode
from backoffice_runs.tasks.base import (
    RunContext,
    RunItemInput,
    RunTaskResult,
    succeeded_data,
)

logger = get_logger("runs.tasks.payments")


class PaymentSelectionTask:
    """Selects payable invoices into a DRAFT pay run."""

    def __init__(self, config=None):
        self._config = config

    @property
    def run_type(self) -> str:
        return "payments.select"

    @property
    def description(self) -> str:
        return "Select open AP invoices into a draft pay run"

    def _service(self, ctx: RunContext):
        from backoffice_modules.payments.service import PaymentsService

        return PaymentsService(
            ctx.session,
            ctx.clock,
            config=self._config,
            auditor=ctx.auditor,
            journal=ctx.journal,
            locks=ctx.locks,
        )

    def normalize_parameters(self, parameters: dict[str, Any]) -> dict[str, Any]:
        pay_run_id = parameters.get("pay_run_id")
        if not pay_run_id:
            raise ValidationError("pay_run_id", pay_run_id, "is required")
        due = parameters.get("due_on_or_before")
        if isinstance(due, str):
            due = date.fromisoformat(due)
        min_amount = parameters.get("min_amount")
        suppliers = parameters.get("suppliers")
        return {
            "pay_run_id": str(UUID(str(pay_run_id))),
            "suppliers": sorted(set(suppliers)) if suppliers else None,
            "due_on_or_before": due.isoformat() if due else None,
            "min_amount": str(to_decimal(min_amount)) if min_amount is not None else None,
        }

    def scheduled_parameters(self, stored: dict[str, Any], fired_at: datetime) -> dict[str, Any]:
        return stored

    def precheck(
        self,
        company: str,
        mode: RunMode,
        parameters: dict[str, Any],
        ctx: RunContext,
    ) -> None:
        pay_run = self._service(ctx).require_draft(UUID(parameters["pay_run_id"]))
        if pay_run.company != company:
            raise ValidationError(
                "pay_run_id", parameters["pay_run_id"], f"belongs to {pay_run.company}",
            )

    def prepare_items(self, ctx: RunContext) -> tuple[RunItemInput, ...]:
        params = ctx.parameters
        service = self._service(ctx)
        service.require_draft(UUID(ctx.parameter("pay_run_id")))
        due = params.get("due_on_or_before")
        invoices = service.open_invoices(
            ctx.company,
            suppliers=params.get("suppliers"),
            due_on_or_before=date.fromisoformat(due) if due else None,
        )

        limit = service.config.max_invoices_per_run
        if len(invoices) > limit:
            raise ValidationError(
                "invoices", len(invoices), f"more than {limit} open invoices in one run",
            )

        return tuple(
            RunItemInput(
                item_index=i,
                item_key=f"{inv.supplier.supplier_code}:{inv.invoice_no}",
                payload={"invoice_id": str(inv.id)},
            )
            for i, inv in enumerate(invoices)
        )

    def execute_item(self, item: RunItemInput, ctx: RunContext) -> RunTaskResult:
        params = ctx.parameters
        min_amount = params.get("min_amount")
        outcome = self._service(ctx).select_invoice(
            pay_run_id=UUID(ctx.parameter("pay_run_id")),
            invoice_id=UUID(item.payload["invoice_id"]),
            run_id=ctx.run_id,
            actor_id=ctx.actor_id,
            min_amount=Decimal(min_amount) if min_amount is not None else None,
        )
        if outcome.skipped:
            return RunTaskResult.skipped(
                outcome.skip_reason.value,
                f"Invoice {outcome.invoice_no}: {outcome.skip_reason.value.lower()}",
                supplier=outcome.supplier_code,
            )
        return RunTaskResult.succeeded(**outcome.preview())

    def finalize(
        self,
        ctx: RunContext,
        results: Sequence[RunItemResult],
    ) -> dict[str, Any]:
        selected = succeeded_data(results)
        total = sum((Decimal(d["amount"]) for d in selected), ZERO)
        skipped: dict[str, int] = {}
        for r in results:
            if r.status == RunItemStatus.SKIPPED and r.error_code:
                skipped[r.error_code] = skipped.get(r.error_code, 0) + 1
        summary = {
            "pay_run_id": ctx.parameter("pay_run_id"),
            "selected_count": len(selected),
            "total_amount": total,
            "suppliers_count": len({d["supplier"] for d in selected}),
            "skipped": skipped,
            "dry_run": ctx.is_dry_run,
        }
        logger.info(
            "payment_selection_finalized",
            extra={"selected": len(selected), "total": str(total)},
        )
        return summary
