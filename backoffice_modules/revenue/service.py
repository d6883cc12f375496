"""
Revenue Module Service -- performance obligations and period recognition.

Thin glue layer that:
1. Maintains the company revenue policy and performance obligations
2. Persists recognition schedules built by ``backoffice_engines.recognition``
3. Recognizes one schedule row for a period (run item work, never commits)
4. Posts a run's recognition lines as one journal and locks the period

Usage:
    service = RevenueService(session, clock)
    service.set_policy("ACME", "4000", "2400", "1250", actor_id)
    pob_id = service.create_pob("ACME", "C-1", "Support", Decimal("1200"), ...)
    service.build_schedule(pob_id, actor_id)
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from backoffice_engines.recognition import (
    RecognitionMethod,
    ScheduleEntry,
    ScheduleStatus,
    build_schedule,
    recognition_status,
)
from backoffice_kernel.db.types import ZERO, validate_currency
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import (
    MissingRevenuePolicyError,
    PeriodAlreadyPostedError,
    ScheduleError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_event import AuditAction
from backoffice_kernel.services.auditor_service import AuditorService
from backoffice_kernel.services.journal_service import (
    JournalLineInput,
    JournalService,
    PostedJournal,
)
from backoffice_kernel.services.lock_service import LockKind, RunLockService
from backoffice_modules.revenue.config import RevenueConfig
from backoffice_modules.revenue.models import (
    RecognitionKind,
    RecognitionLine,
    RevenuePolicy,
)
from backoffice_modules.revenue.orm import (
    RevEventModel,
    RevPobModel,
    RevPolicyModel,
    RevScheduleModel,
)

logger = get_logger("modules.revenue.service")

OPEN_STATUSES = (ScheduleStatus.PLANNED.value, ScheduleStatus.PARTIAL.value)


def recognition_journal_key(run_id: UUID) -> str:
    return f"rev-recognition-{run_id}"


class RevenueService:
    """
    Revenue recognition for performance obligations.

    Engine composition:
    - build_schedule: planned amount per period
    - recognition_status: PLANNED / PARTIAL / DONE
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: RevenueConfig | None = None,
        auditor: AuditorService | None = None,
        journal: JournalService | None = None,
        locks: RunLockService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or RevenueConfig.with_defaults()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._journal = journal or JournalService(session, self._auditor, self._clock)
        self._locks = locks or RunLockService(session, self._auditor, self._clock)

    @property
    def config(self) -> RevenueConfig:
        return self._config

    # =========================================================================
    # Policy and obligations
    # =========================================================================

    def set_policy(
        self,
        company: str,
        rev_account: str,
        deferred_rev_account: str,
        unbilled_ar_account: str,
        actor_id: UUID,
    ) -> RevenuePolicy:
        try:
            model = self._session.execute(
                select(RevPolicyModel).where(RevPolicyModel.company == company)
            ).scalar_one_or_none()
            if model is None:
                model = RevPolicyModel(company=company, created_by_id=actor_id)
                self._session.add(model)
            else:
                model.updated_by_id = actor_id
            model.rev_account = rev_account
            model.deferred_rev_account = deferred_rev_account
            model.unbilled_ar_account = unbilled_ar_account
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("revenue_policy_set", extra={"company": company})
        return model.to_dto()

    def get_policy(self, company: str) -> RevenuePolicy:
        """
        Raises:
            MissingRevenuePolicyError: No policy for the company.
        """
        model = self._session.execute(
            select(RevPolicyModel).where(RevPolicyModel.company == company)
        ).scalar_one_or_none()
        if model is None:
            raise MissingRevenuePolicyError(company)
        return model.to_dto()

    def create_pob(
        self,
        company: str,
        contract_id: str,
        description: str,
        allocated_amount: Decimal,
        currency: str,
        start_date: date,
        actor_id: UUID,
        end_date: date | None = None,
        method: RecognitionMethod | None = None,
    ) -> UUID:
        validate_currency(currency)
        if allocated_amount <= ZERO:
            raise ValidationError("allocated_amount", allocated_amount, "must be positive")
        if end_date is not None and end_date < start_date:
            raise ValidationError("end_date", end_date, "is before start_date")
        method = method or RecognitionMethod(self._config.default_method)
        try:
            model = RevPobModel(
                company=company,
                contract_id=contract_id,
                description=description,
                allocated_amount=allocated_amount,
                currency=currency,
                start_date=start_date,
                end_date=end_date,
                method=method.value,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info(
            "revenue_pob_created",
            extra={
                "company": company,
                "contract_id": contract_id,
                "amount": str(allocated_amount),
                "method": method.value,
            },
        )
        return model.id

    def build_schedule(
        self,
        pob_id: UUID,
        actor_id: UUID,
        method: RecognitionMethod | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> tuple[ScheduleEntry, ...]:
        """
        (Re)build and persist the obligation's schedule.  Arguments default
        to the obligation's own method and dates.

        Raises:
            ScheduleError: Invalid dates, or revenue was already recognized
                against the current schedule.
        """
        try:
            pob = self._session.get(RevPobModel, pob_id)
            if pob is None:
                raise ValidationError("pob_id", pob_id, "no such performance obligation")

            method = method or RecognitionMethod(pob.method)
            start = start or pob.start_date
            end = end or pob.end_date
            entries = build_schedule(
                method=method, amount=pob.allocated_amount, start=start, end=end,
            )

            recognized = self._session.execute(
                select(RevScheduleModel.id).where(
                    RevScheduleModel.pob_id == pob_id,
                    RevScheduleModel.recognized > ZERO,
                ).limit(1)
            ).scalar_one_or_none()
            if recognized is not None:
                raise ScheduleError(f"revenue already recognized for obligation {pob_id}")

            self._session.execute(
                delete(RevScheduleModel).where(RevScheduleModel.pob_id == pob_id)
            )
            for entry in entries:
                self._session.add(
                    RevScheduleModel(
                        pob_id=pob.id,
                        company=pob.company,
                        year=entry.period.year,
                        month=entry.period.month,
                        planned=entry.planned,
                        recognized=ZERO,
                        status=ScheduleStatus.PLANNED.value,
                        created_by_id=actor_id,
                    )
                )
            pob.method = method.value
            pob.start_date = start
            pob.end_date = end
            self._session.flush()
            self._auditor.record(
                "PerformanceObligation",
                pob.id,
                AuditAction.SCHEDULE_BUILT,
                actor_id,
                {
                    "method": method.value,
                    "periods": [e.period.key for e in entries],
                    "amount": str(pob.allocated_amount),
                },
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "revenue_schedule_built",
            extra={"pob_id": str(pob_id), "method": method.value, "periods": len(entries)},
        )
        return entries

    def schedule(self, pob_id: UUID) -> list[RevScheduleModel]:
        return list(
            self._session.execute(
                select(RevScheduleModel)
                .where(RevScheduleModel.pob_id == pob_id)
                .order_by(RevScheduleModel.year, RevScheduleModel.month)
            ).scalars()
        )

    # =========================================================================
    # Recognition
    # =========================================================================

    def is_period_posted(self, company: str, period: Period) -> bool:
        return self._locks.is_locked(LockKind.REVENUE_PERIOD, company, period.key)

    def check_period_open(self, company: str, period: Period) -> None:
        """
        Raises:
            PeriodAlreadyPostedError: The period's recognition was posted.
        """
        if self.is_period_posted(company, period):
            raise PeriodAlreadyPostedError(company, period.key)

    def open_schedules(self, company: str, period: Period) -> list[RevScheduleModel]:
        """PLANNED or PARTIAL schedule rows of the period, by contract."""
        return list(
            self._session.execute(
                select(RevScheduleModel)
                .join(RevPobModel, RevScheduleModel.pob_id == RevPobModel.id)
                .where(
                    RevScheduleModel.company == company,
                    RevScheduleModel.year == period.year,
                    RevScheduleModel.month == period.month,
                    RevScheduleModel.status.in_(OPEN_STATUSES),
                )
                .order_by(RevPobModel.contract_id, RevPobModel.start_date, RevPobModel.id)
            ).scalars()
        )

    def recognize_schedule(
        self,
        schedule_id: UUID,
        run_id: UUID,
        actor_id: UUID,
    ) -> RecognitionLine | None:
        """
        Recognize the outstanding planned amount of one schedule row.
        Returns None when nothing is outstanding.  Does NOT commit.
        """
        row = self._session.execute(
            select(RevScheduleModel)
            .where(RevScheduleModel.id == schedule_id)
            .with_for_update()
        ).scalar_one()
        delta = row.planned - row.recognized
        if delta <= ZERO:
            return None

        pob = row.pob
        policy = self.get_policy(row.company)
        period = Period(row.year, row.month)
        if period.first_day >= pob.start_date:
            kind, dr_account = RecognitionKind.UNBILLED_AR, policy.unbilled_ar_account
        else:
            kind, dr_account = RecognitionKind.DEFERRED, policy.deferred_rev_account

        row.recognized = row.recognized + delta
        row.status = recognition_status(row.planned, row.recognized).value
        row.updated_by_id = actor_id
        self._session.add(
            RevEventModel(
                company=row.company,
                pob_id=pob.id,
                schedule_id=row.id,
                run_id=run_id,
                year=row.year,
                month=row.month,
                amount=delta,
                kind=kind.value,
                dr_account=dr_account,
                cr_account=policy.rev_account,
                created_by_id=actor_id,
            )
        )
        self._session.flush()

        return RecognitionLine(
            schedule_id=row.id,
            pob_id=pob.id,
            contract_id=pob.contract_id,
            period=period.key,
            amount=delta,
            kind=kind,
            dr_account=dr_account,
            cr_account=policy.rev_account,
        )

    def post_recognition(
        self,
        company: str,
        period: Period,
        lines: Sequence[RecognitionLine],
        run_id: UUID,
        actor_id: UUID,
    ) -> PostedJournal:
        """
        Post a run's recognition lines as one balanced journal, then lock
        the period.  Debits are summed per account; revenue is credited
        per account.  Does NOT commit.

        Raises:
            LockHeldError: The period was posted concurrently.
        """
        debits: OrderedDict[str, Decimal] = OrderedDict()
        credits: OrderedDict[str, Decimal] = OrderedDict()
        for line in lines:
            debits[line.dr_account] = debits.get(line.dr_account, ZERO) + line.amount
            credits[line.cr_account] = credits.get(line.cr_account, ZERO) + line.amount

        journal_lines = [
            JournalLineInput.dr(account, amount, description="Revenue recognized")
            for account, amount in debits.items()
        ] + [
            JournalLineInput.cr(account, amount, description="Revenue recognized")
            for account, amount in credits.items()
        ]
        posted = self._journal.post(
            company=company,
            entry_date=period.last_day,
            lines=journal_lines,
            memo=f"{self._config.memo_prefix} {period.key}",
            source=self._config.journal_source,
            idempotency_key=recognition_journal_key(run_id),
            actor_id=actor_id,
            currency=self._config.currency,
            source_run_id=run_id,
        )
        self._session.execute(
            update(RevEventModel)
            .where(RevEventModel.run_id == run_id)
            .values(journal_entry_id=posted.entry_id)
        )
        self._locks.acquire(
            LockKind.REVENUE_PERIOD, company, period.key, actor_id, run_id=run_id,
        )
        self._auditor.record(
            "RevenuePeriod",
            posted.entry_id,
            AuditAction.REVENUE_RECOGNIZED,
            actor_id,
            {"company": company, "period": period.key, "lines": len(lines)},
        )
        logger.info(
            "revenue_recognition_posted",
            extra={
                "company": company,
                "period": period.key,
                "journal_entry_id": str(posted.entry_id),
                "total": str(posted.total),
            },
        )
        return posted
