"""
Dunning Module Service -- payment reminders for overdue receivables.

Thin glue layer that:
1. Maintains customers, open items, policy steps and templates
2. Ages open items into (customer, bucket) groups via
   ``backoffice_engines.aging``
3. Walks a group's policy steps, applying the throttle and wait checks of
   ``backoffice_engines.dunning``, and logs each reminder it sends

Reminders are written to ``ar_dunning_log`` with status QUEUED; delivery
is the outbound channel's job.  ``process_group`` is run item work and
never commits.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from backoffice_engines.aging import (
    CURRENT,
    AgedItem,
    OpenItem,
    group_by_customer_bucket,
)
from backoffice_engines.dunning import (
    DunningContext,
    is_throttled,
    is_waiting,
    render_template,
)
from backoffice_kernel.db.types import ZERO
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.exceptions import DunningTemplateMissingError, ValidationError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_event import AuditAction
from backoffice_kernel.services.auditor_service import AuditorService
from backoffice_modules.dunning.config import DunningConfig
from backoffice_modules.dunning.models import (
    DunningChannel,
    DunningSkipReason,
    GroupOutcome,
    PolicyStep,
    StepOutcome,
    StepResult,
)
from backoffice_modules.dunning.orm import (
    ArCustomerModel,
    ArDunningLogModel,
    ArDunningPolicyModel,
    ArDunningTemplateModel,
    ArOpenItemModel,
)

logger = get_logger("modules.dunning.service")


class DunningService:
    """
    Dunning runs over aged receivables.

    Engine composition:
    - group_by_customer_bucket: aging
    - is_throttled / is_waiting / render_template: step decisions
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: DunningConfig | None = None,
        auditor: AuditorService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or DunningConfig.with_defaults()
        self._auditor = auditor or AuditorService(session, self._clock)

    @property
    def config(self) -> DunningConfig:
        return self._config

    # =========================================================================
    # Master data
    # =========================================================================

    def create_customer(
        self,
        company: str,
        customer_code: str,
        name: str,
        actor_id: UUID,
        email: str | None = None,
        webhook_url: str | None = None,
        segment: str | None = None,
    ) -> UUID:
        try:
            model = ArCustomerModel(
                company=company,
                customer_code=customer_code,
                name=name,
                email=email,
                webhook_url=webhook_url,
                segment=segment or self._config.default_segment,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return model.id

    def add_open_item(
        self,
        company: str,
        customer_code: str,
        invoice_no: str,
        invoice_date: date,
        due_date: date,
        amount_due: Decimal,
        actor_id: UUID,
    ) -> UUID:
        try:
            customer = self._customer(company, customer_code)
            model = ArOpenItemModel(
                company=company,
                customer_id=customer.id,
                invoice_no=invoice_no,
                invoice_date=invoice_date,
                due_date=due_date,
                amount_due=amount_due,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return model.id

    def add_policy_step(
        self,
        company: str,
        step: PolicyStep,
        actor_id: UUID,
    ) -> None:
        if step.step_idx < 0 or step.wait_days < 0 or step.throttle_days < 0:
            raise ValidationError(
                "policy_step", step.policy_code, "step_idx, wait_days and throttle_days must be >= 0",
            )
        try:
            self._session.add(
                ArDunningPolicyModel(
                    company=company,
                    policy_code=step.policy_code,
                    segment=step.segment,
                    from_bucket=step.from_bucket,
                    step_idx=step.step_idx,
                    wait_days=step.wait_days,
                    channel=step.channel.value,
                    template_code=step.template_code,
                    throttle_days=step.throttle_days,
                    created_by_id=actor_id,
                )
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "dunning_policy_step_added",
            extra={
                "company": company,
                "policy_code": step.policy_code,
                "from_bucket": step.from_bucket,
                "step_idx": step.step_idx,
            },
        )

    def upsert_template(
        self,
        company: str,
        template_code: str,
        subject: str,
        body: str,
        actor_id: UUID,
    ) -> None:
        try:
            model = self._template(company, template_code)
            if model is None:
                self._session.add(
                    ArDunningTemplateModel(
                        company=company,
                        template_code=template_code,
                        subject=subject,
                        body=body,
                        created_by_id=actor_id,
                    )
                )
            else:
                model.subject = subject
                model.body = body
                model.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Lookups
    # =========================================================================

    def _customer(self, company: str, customer_code: str) -> ArCustomerModel:
        customer = self._session.execute(
            select(ArCustomerModel).where(
                ArCustomerModel.company == company,
                ArCustomerModel.customer_code == customer_code,
            )
        ).scalar_one_or_none()
        if customer is None:
            raise ValidationError("customer_code", customer_code, f"no such customer for {company}")
        return customer

    def _template(self, company: str, template_code: str) -> ArDunningTemplateModel | None:
        return self._session.execute(
            select(ArDunningTemplateModel).where(
                ArDunningTemplateModel.company == company,
                ArDunningTemplateModel.template_code == template_code,
            )
        ).scalar_one_or_none()

    def aged_groups(
        self,
        company: str,
        as_of: date,
        customer_code: str | None = None,
    ) -> dict[tuple[str, str], tuple[AgedItem, ...]]:
        """Overdue groups keyed by (customer_code, bucket).  CURRENT is excluded."""
        query = (
            select(ArOpenItemModel, ArCustomerModel.customer_code)
            .join(ArCustomerModel, ArOpenItemModel.customer_id == ArCustomerModel.id)
            .where(ArOpenItemModel.company == company)
        )
        if customer_code is not None:
            query = query.where(ArCustomerModel.customer_code == customer_code)
        rows = self._session.execute(query).all()
        groups = group_by_customer_bucket(
            items=[
                OpenItem(
                    document_id=item.invoice_no,
                    customer_id=customer_code,
                    invoice_date=item.invoice_date,
                    due_date=item.due_date,
                    amount_due=item.amount_due,
                )
                for item, customer_code in rows
            ],
            as_of=as_of,
        )
        return {key: items for key, items in groups.items() if key[1] != CURRENT}

    def policy_steps(self, company: str, bucket: str, segment: str | None) -> list[PolicyStep]:
        """Steps for the bucket that apply to ``segment``, in step order."""
        models = self._session.execute(
            select(ArDunningPolicyModel)
            .where(
                ArDunningPolicyModel.company == company,
                ArDunningPolicyModel.from_bucket == bucket,
                or_(
                    ArDunningPolicyModel.segment.is_(None),
                    ArDunningPolicyModel.segment == segment,
                ),
            )
            .order_by(ArDunningPolicyModel.step_idx, ArDunningPolicyModel.policy_code)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def last_sent_at(
        self,
        company: str,
        customer_id: UUID,
        bucket: str,
        step: PolicyStep,
    ) -> datetime | None:
        return self._session.execute(
            select(func.max(ArDunningLogModel.sent_at)).where(
                ArDunningLogModel.company == company,
                ArDunningLogModel.customer_id == customer_id,
                ArDunningLogModel.bucket == bucket,
                ArDunningLogModel.policy_code == step.policy_code,
                ArDunningLogModel.step_idx == step.step_idx,
            )
        ).scalar_one_or_none()

    def history(self, company: str, customer_code: str) -> list[ArDunningLogModel]:
        customer = self._customer(company, customer_code)
        return list(
            self._session.execute(
                select(ArDunningLogModel)
                .where(ArDunningLogModel.customer_id == customer.id)
                .order_by(ArDunningLogModel.sent_at, ArDunningLogModel.step_idx)
            ).scalars()
        )

    # =========================================================================
    # Dunning (run item work)
    # =========================================================================

    def process_group(
        self,
        company: str,
        customer_code: str,
        bucket: str,
        as_of: date,
        run_id: UUID,
        actor_id: UUID,
        items: Sequence[AgedItem] | None = None,
    ) -> GroupOutcome:
        """
        Walk the policy steps for one (customer, bucket) group.  Does NOT commit.

        ``items`` are the group's aged items when the caller already has them
        (a run aged the whole company once in ``prepare_items``).  Throttling
        is measured from ``as_of`` at the current time of day.

        Raises:
            DunningTemplateMissingError: A step's template does not exist.
        """
        customer = self._customer(company, customer_code)
        if items is None:
            items = self.aged_groups(company, as_of, customer_code).get((customer_code, bucket), ())
        total_due = sum((i.amount_due for i in items), ZERO)
        base = dict(
            customer_code=customer_code,
            bucket=bucket,
            invoice_count=len(items),
            total_due=total_due,
        )

        steps = self.policy_steps(company, bucket, customer.segment)
        if not steps:
            return GroupOutcome(**base, skip_reason=DunningSkipReason.NO_POLICY)
        if not items:
            return GroupOutcome(**base, skip_reason=DunningSkipReason.NOTHING_DUE)

        context = DunningContext(
            customer_name=customer.name,
            total_due=total_due,
            invoice_count=len(items),
            oldest_days=max(i.days_past_due for i in items),
            bucket=bucket,
        )
        newest_invoice = max(i.invoice_date for i in items)
        now = self._clock.now()
        throttle_as_of = datetime.combine(as_of, now.timetz())

        results: list[StepResult] = []
        for step in steps:
            last = self.last_sent_at(company, customer.id, bucket, step)
            if is_throttled(last, throttle_as_of, step.throttle_days):
                results.append(
                    StepResult(step.step_idx, step.policy_code, step.channel, StepOutcome.THROTTLED)
                )
                continue
            if is_waiting(newest_invoice, as_of, step.wait_days):
                results.append(
                    StepResult(step.step_idx, step.policy_code, step.channel, StepOutcome.WAITING)
                )
                continue

            template = self._template(company, step.template_code)
            if template is None:
                raise DunningTemplateMissingError(step.policy_code, step.template_code)

            recipient = (
                customer.email if step.channel == DunningChannel.EMAIL else customer.webhook_url
            )
            subject = render_template(template.subject, context)
            log = ArDunningLogModel(
                company=company,
                customer_id=customer.id,
                bucket=bucket,
                policy_code=step.policy_code,
                step_idx=step.step_idx,
                channel=step.channel.value,
                template_code=step.template_code,
                recipient=recipient,
                subject=subject,
                body=render_template(template.body, context),
                sent_at=now,
                run_id=run_id,
                created_by_id=actor_id,
            )
            self._session.add(log)
            self._session.flush()
            self._auditor.record(
                "DunningLog",
                log.id,
                AuditAction.DUNNING_SENT,
                actor_id,
                {
                    "customer": customer_code,
                    "bucket": bucket,
                    "policy_code": step.policy_code,
                    "step_idx": step.step_idx,
                    "channel": step.channel.value,
                },
            )
            results.append(
                StepResult(
                    step.step_idx,
                    step.policy_code,
                    step.channel,
                    StepOutcome.SENT,
                    subject=subject,
                    recipient=recipient,
                )
            )

        outcome = GroupOutcome(**base, steps=tuple(results))
        if not outcome.sent:
            return GroupOutcome(
                **base, steps=tuple(results), skip_reason=DunningSkipReason.NOTHING_DUE,
            )

        logger.info(
            "dunning_group_processed",
            extra={
                "customer": customer_code,
                "bucket": bucket,
                "sent": len(outcome.sent),
                "total_due": str(total_due),
            },
        )
        return outcome
