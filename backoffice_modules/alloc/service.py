"""
Allocation Module Service -- rule maintenance and per-rule allocation.

Thin glue layer that:
1. Persists rules, driver statistics and the account map
2. Calls AllocationEngine to evaluate a rule against the period's trial balance
3. Calls JournalService to post the allocation and RunLockService to lock
   the rule for the period

All computation lives in the engine.  All posting lives in the kernel.

Maintenance methods (``create_rule``, ``upsert_driver_values``,
``map_account``) own their transaction: commit on success, roll back on
failure.  ``allocate_rule`` runs inside a run item's savepoint and never
commits.

Usage:
    service = AllocationService(session, clock)
    service.create_rule("ACME", "RENT", "Rent to ops", AllocationMethod.PERCENT,
                        "6100", date(2026, 1, 1), actor_id, targets=[...])
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_engines.allocation import (
    AllocationEngine,
    AllocationMethod,
    AllocationRule,
    AllocationTarget,
    BalanceRow,
    DriverValue,
    active_rules_for_period,
)
from backoffice_kernel.db.types import ZERO
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import ValidationError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_event import AuditAction
from backoffice_kernel.services.auditor_service import AuditorService
from backoffice_kernel.services.journal_service import JournalLineInput, JournalService
from backoffice_kernel.services.lock_service import LockKind, RunLockService
from backoffice_modules.alloc.config import AllocationConfig
from backoffice_modules.alloc.models import RuleOutcome, RuleSkipReason
from backoffice_modules.alloc.orm import (
    AllocAccountMapModel,
    AllocDriverValueModel,
    AllocRuleModel,
    AllocRuleTargetModel,
    AllocRunLineModel,
)

logger = get_logger("modules.alloc.service")


def rule_lock_scope(period: Period, rule_code: str) -> str:
    return f"{period.key}:{rule_code}"


def journal_key(company: str, period: Period, rule_code: str) -> str:
    return f"alloc:{company}:{period.key}:{rule_code}"


class AllocationService:
    """
    Maintains allocation rules and allocates one rule for one period.

    Engine composition:
    - AllocationEngine: pool and line computation
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: AllocationConfig | None = None,
        auditor: AuditorService | None = None,
        journal: JournalService | None = None,
        locks: RunLockService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or AllocationConfig.with_defaults()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._journal = journal or JournalService(session, self._auditor, self._clock)
        self._locks = locks or RunLockService(session, self._auditor, self._clock)
        self._engine = AllocationEngine()

    @property
    def config(self) -> AllocationConfig:
        return self._config

    # =========================================================================
    # Rules and drivers
    # =========================================================================

    def create_rule(
        self,
        company: str,
        code: str,
        name: str,
        method: AllocationMethod,
        src_account: str,
        eff_from: date,
        actor_id: UUID,
        targets: Sequence[tuple[str, Decimal]] = (),
        src_cc_like: str | None = None,
        src_project: str | None = None,
        driver_code: str | None = None,
        rate_per_unit: Decimal | None = None,
        eff_to: date | None = None,
        order_no: int = 1,
    ) -> AllocationRule:
        """
        Create a rule.  The definition is validated by the engine dataclass
        before anything is written.

        Raises:
            AllocationRuleError: Invalid rule definition.
            ValidationError: A rule with this code already exists.
        """
        rule = AllocationRule(
            code=code,
            name=name,
            method=method,
            src_account=src_account,
            eff_from=eff_from,
            src_cc_like=src_cc_like,
            src_project=src_project,
            driver_code=driver_code,
            rate_per_unit=rate_per_unit,
            targets=tuple(AllocationTarget(cc, pct) for cc, pct in targets),
            eff_to=eff_to,
            order_no=order_no,
        )

        try:
            if self._get_rule_model(company, code) is not None:
                raise ValidationError("code", code, f"rule already exists for {company}")

            model = AllocRuleModel(
                company=company,
                code=rule.code,
                name=rule.name,
                method=rule.method.value,
                src_account=rule.src_account,
                src_cc_like=rule.src_cc_like,
                src_project=rule.src_project,
                driver_code=rule.driver_code,
                rate_per_unit=rule.rate_per_unit,
                eff_from=rule.eff_from,
                eff_to=rule.eff_to,
                order_no=rule.order_no,
                active=True,
                created_by_id=actor_id,
            )
            for position, target in enumerate(rule.targets):
                model.targets.append(
                    AllocRuleTargetModel(
                        position=position,
                        cost_center=target.cost_center,
                        percent=target.percent,
                        created_by_id=actor_id,
                    )
                )
            self._session.add(model)
            self._session.flush()

            self._auditor.record(
                "AllocRule",
                model.id,
                AuditAction.RULE_CREATED,
                actor_id,
                {"company": company, "code": code, "method": method.value},
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "alloc_rule_created",
            extra={"company": company, "rule_code": code, "method": method.value},
        )
        return rule

    def deactivate_rule(self, company: str, code: str, actor_id: UUID) -> None:
        try:
            model = self._get_rule_model(company, code)
            if model is None:
                raise ValidationError("code", code, f"no such rule for {company}")
            model.active = False
            model.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("alloc_rule_deactivated", extra={"company": company, "rule_code": code})

    def upsert_driver_values(
        self,
        company: str,
        period: Period,
        values: Iterable[DriverValue],
        actor_id: UUID,
    ) -> int:
        """Insert or overwrite driver statistics for a period.  Returns the row count."""
        count = 0
        try:
            for value in values:
                existing = self._session.execute(
                    select(AllocDriverValueModel).where(
                        AllocDriverValueModel.company == company,
                        AllocDriverValueModel.driver_code == value.driver_code,
                        AllocDriverValueModel.year == period.year,
                        AllocDriverValueModel.month == period.month,
                        AllocDriverValueModel.cost_center.is_(value.cost_center)
                        if value.cost_center is None
                        else AllocDriverValueModel.cost_center == value.cost_center,
                        AllocDriverValueModel.project.is_(value.project)
                        if value.project is None
                        else AllocDriverValueModel.project == value.project,
                    )
                ).scalar_one_or_none()
                if existing is None:
                    self._session.add(
                        AllocDriverValueModel(
                            company=company,
                            driver_code=value.driver_code,
                            year=period.year,
                            month=period.month,
                            cost_center=value.cost_center,
                            project=value.project,
                            value=value.value,
                            created_by_id=actor_id,
                        )
                    )
                else:
                    existing.value = value.value
                    existing.updated_by_id = actor_id
                count += 1
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "alloc_driver_values_upserted",
            extra={"company": company, "period": period.key, "count": count},
        )
        return count

    def map_account(
        self,
        company: str,
        src_account: str,
        target_account: str,
        actor_id: UUID,
    ) -> None:
        """Debit allocations of ``src_account`` to ``target_account``."""
        try:
            existing = self._session.execute(
                select(AllocAccountMapModel).where(
                    AllocAccountMapModel.company == company,
                    AllocAccountMapModel.src_account == src_account,
                )
            ).scalar_one_or_none()
            if existing is None:
                self._session.add(
                    AllocAccountMapModel(
                        company=company,
                        src_account=src_account,
                        target_account=target_account,
                        created_by_id=actor_id,
                    )
                )
            else:
                existing.target_account = target_account
                existing.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "alloc_account_mapped",
            extra={
                "company": company,
                "src_account": src_account,
                "target_account": target_account,
            },
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def _get_rule_model(self, company: str, code: str) -> AllocRuleModel | None:
        return self._session.execute(
            select(AllocRuleModel).where(
                AllocRuleModel.company == company,
                AllocRuleModel.code == code,
            )
        ).scalar_one_or_none()

    def get_rule(self, company: str, code: str) -> AllocationRule:
        model = self._get_rule_model(company, code)
        if model is None:
            raise ValidationError("code", code, f"no such rule for {company}")
        return model.to_dto()

    def list_rules(self, company: str) -> list[AllocationRule]:
        models = self._session.execute(
            select(AllocRuleModel)
            .where(AllocRuleModel.company == company)
            .order_by(AllocRuleModel.order_no, AllocRuleModel.code)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def active_rules(
        self,
        company: str,
        period: Period,
        rule_codes: Iterable[str] | None = None,
    ) -> tuple[AllocationRule, ...]:
        return active_rules_for_period(self.list_rules(company), period, rule_codes)

    def driver_values(self, company: str, driver_code: str, period: Period) -> list[DriverValue]:
        models = self._session.execute(
            select(AllocDriverValueModel).where(
                AllocDriverValueModel.company == company,
                AllocDriverValueModel.driver_code == driver_code,
                AllocDriverValueModel.year == period.year,
                AllocDriverValueModel.month == period.month,
            )
        ).scalars().all()
        return [m.to_dto() for m in models]

    def target_account(self, company: str, src_account: str) -> str:
        """The mapped debit account, falling back to the source account."""
        mapped = self._session.execute(
            select(AllocAccountMapModel.target_account).where(
                AllocAccountMapModel.company == company,
                AllocAccountMapModel.src_account == src_account,
            )
        ).scalar_one_or_none()
        return mapped or src_account

    def run_lines(self, run_id: UUID) -> list[AllocRunLineModel]:
        return list(
            self._session.execute(
                select(AllocRunLineModel)
                .where(AllocRunLineModel.run_id == run_id)
                .order_by(AllocRunLineModel.rule_code, AllocRunLineModel.target_cost_center)
            ).scalars()
        )

    def is_rule_locked(self, company: str, period: Period, rule_code: str) -> bool:
        return self._locks.is_locked(
            LockKind.ALLOC_RULE, company, rule_lock_scope(period, rule_code),
        )

    # =========================================================================
    # Allocation (run item work)
    # =========================================================================

    def allocate_rule(
        self,
        company: str,
        period: Period,
        rule_code: str,
        run_id: UUID,
        actor_id: UUID,
        post: bool,
        memo: str | None = None,
    ) -> RuleOutcome:
        """
        Evaluate one rule for one period and, when ``post`` is set, post
        its journal and take the rule lock.  Does NOT commit.

        Raises:
            LockHeldError: The rule was locked between the check and the post.
            UnbalancedJournalError / EmptyJournalError: from the journal.
        """
        rule = self.get_rule(company, rule_code)

        if self.is_rule_locked(company, period, rule.code):
            return RuleOutcome(
                rule.code, rule.name, period.key, skip_reason=RuleSkipReason.RULE_LOCKED,
            )

        balances = [
            BalanceRow(
                account=row.account,
                balance=row.balance,
                cost_center=row.cost_center,
                project=row.project,
            )
            for row in self._journal.trial_balance(company, period)
        ]
        drivers = (
            self.driver_values(company, rule.driver_code, period)
            if rule.driver_code
            else []
        )
        allocation = self._engine.evaluate(rule=rule, balances=balances, drivers=drivers)

        if allocation.pool <= ZERO:
            return RuleOutcome(
                rule.code, rule.name, period.key,
                pool=allocation.pool, skip_reason=RuleSkipReason.EMPTY_POOL,
            )
        if allocation.is_empty:
            return RuleOutcome(
                rule.code, rule.name, period.key,
                pool=allocation.pool, skip_reason=RuleSkipReason.NO_DRIVERS,
            )

        target_account = self.target_account(company, rule.src_account)
        for line in allocation.lines:
            self._session.add(
                AllocRunLineModel(
                    run_id=run_id,
                    company=company,
                    year=period.year,
                    month=period.month,
                    rule_code=rule.code,
                    src_account=rule.src_account,
                    target_account=target_account,
                    target_cost_center=line.target_cost_center,
                    target_project=line.target_project,
                    driver_code=line.driver_code,
                    driver_value=line.driver_value,
                    amount=line.amount,
                    note=line.note,
                    created_by_id=actor_id,
                )
            )
        self._session.flush()

        entry_id = None
        if post:
            journal_lines = [
                JournalLineInput.dr(
                    target_account,
                    line.amount,
                    cost_center=line.target_cost_center,
                    project=line.target_project,
                    description=line.note,
                )
                for line in allocation.lines
            ]
            journal_lines.append(
                JournalLineInput.cr(
                    rule.src_account,
                    allocation.total,
                    description=f"Allocated out: {rule.code}",
                )
            )
            posted = self._journal.post(
                company=company,
                entry_date=period.last_day,
                lines=journal_lines,
                memo=memo or f"{self._config.memo_prefix}: {rule.name}",
                source=self._config.journal_source,
                idempotency_key=journal_key(company, period, rule.code),
                actor_id=actor_id,
                currency=self._config.currency,
                source_run_id=run_id,
            )
            entry_id = posted.entry_id
            self._locks.acquire(
                LockKind.ALLOC_RULE,
                company,
                rule_lock_scope(period, rule.code),
                actor_id,
                run_id=run_id,
            )

        logger.info(
            "alloc_rule_allocated",
            extra={
                "company": company,
                "period": period.key,
                "rule_code": rule.code,
                "pool": str(allocation.pool),
                "total": str(allocation.total),
                "posted": post,
            },
        )
        return RuleOutcome(
            rule_code=rule.code,
            rule_name=rule.name,
            period=period.key,
            pool=allocation.pool,
            lines=allocation.lines,
            journal_entry_id=entry_id,
        )
