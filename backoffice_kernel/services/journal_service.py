"""
JournalService -- balanced, idempotent journal posting and period balances.

Responsibility:
    The single write path to the ledger for every commit run.  Validates
    that a journal is non-empty and balanced, assigns a sequence number,
    persists entry and lines, and audits the posting.  Also answers the
    trial balance query that allocation runs draw their source pools from.

Architecture position:
    Kernel > Services.  Called by run tasks and module services.

Invariants enforced:
    - Non-empty: at least one non-zero line.
    - Balanced: sum(debit) == sum(credit).
    - Single-sided lines with non-negative amounts.
    - Idempotent: a key already posted returns the existing entry and
      writes nothing.

Failure modes:
    - EmptyJournalError, UnbalancedJournalError, ValidationError.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice_kernel.db.types import ZERO, round_money
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import (
    EmptyJournalError,
    UnbalancedJournalError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.journal import JournalEntry, JournalLine
from backoffice_kernel.services.auditor_service import AuditorService
from backoffice_kernel.services.sequence_service import SequenceService

logger = get_logger("services.journal")


@dataclass(frozen=True)
class JournalLineInput:
    """A line to post.  Exactly one of ``debit`` / ``credit`` is non-zero."""

    account: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    cost_center: str | None = None
    project: str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        if not self.account:
            raise ValidationError("account", self.account, "journal line needs an account")
        if self.debit < 0 or self.credit < 0:
            raise ValidationError(
                "amount", f"{self.debit}/{self.credit}", "journal amounts must be non-negative"
            )
        if self.debit and self.credit:
            raise ValidationError(
                "amount", f"{self.debit}/{self.credit}", "a line is either a debit or a credit"
            )

    @property
    def is_zero(self) -> bool:
        return not self.debit and not self.credit

    @classmethod
    def dr(cls, account: str, amount: Decimal, **dims: str | None) -> "JournalLineInput":
        return cls(account=account, debit=amount, **dims)

    @classmethod
    def cr(cls, account: str, amount: Decimal, **dims: str | None) -> "JournalLineInput":
        return cls(account=account, credit=amount, **dims)


@dataclass(frozen=True)
class PostedJournal:
    """Outcome of a posting request."""

    entry_id: UUID
    idempotency_key: str
    seq: int
    total: Decimal
    line_count: int
    already_posted: bool = False


@dataclass(frozen=True)
class TrialBalanceRow:
    account: str
    cost_center: str | None
    project: str | None
    debit: Decimal
    credit: Decimal

    @property
    def balance(self) -> Decimal:
        return self.debit - self.credit


class JournalService:
    """Posts balanced journal entries.  Does NOT commit."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ):
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    def get_by_key(self, idempotency_key: str) -> JournalEntry | None:
        return self._session.execute(
            select(JournalEntry).where(JournalEntry.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def post(
        self,
        company: str,
        entry_date: date,
        lines: Sequence[JournalLineInput],
        memo: str,
        source: str,
        idempotency_key: str,
        actor_id: UUID,
        currency: str = "USD",
        source_run_id: UUID | None = None,
    ) -> PostedJournal:
        """
        Post a journal entry.

        Zero lines are dropped before validation.

        Raises:
            EmptyJournalError: No non-zero lines.
            UnbalancedJournalError: Debits differ from credits.
        """
        existing = self.get_by_key(idempotency_key)
        if existing is not None:
            logger.info(
                "journal_already_posted",
                extra={"idempotency_key": idempotency_key, "entry_id": str(existing.id)},
            )
            return PostedJournal(
                entry_id=existing.id,
                idempotency_key=idempotency_key,
                seq=existing.seq,
                total=existing.total_debits,
                line_count=len(existing.lines),
                already_posted=True,
            )

        postable = [line for line in lines if not line.is_zero]
        if not postable:
            raise EmptyJournalError(idempotency_key)

        debits = sum((round_money(line.debit) for line in postable), ZERO)
        credits = sum((round_money(line.credit) for line in postable), ZERO)
        if debits != credits:
            logger.warning(
                "journal_unbalanced",
                extra={
                    "idempotency_key": idempotency_key,
                    "debits": str(debits),
                    "credits": str(credits),
                },
            )
            raise UnbalancedJournalError(str(debits), str(credits), idempotency_key)

        seq = self._sequence.next_value(SequenceService.JOURNAL_ENTRY)
        entry = JournalEntry(
            company=company,
            entry_date=entry_date,
            memo=memo,
            source=source,
            source_run_id=source_run_id,
            idempotency_key=idempotency_key,
            currency=currency,
            seq=seq,
            created_by_id=actor_id,
        )
        for line_no, line in enumerate(postable, start=1):
            entry.lines.append(
                JournalLine(
                    line_no=line_no,
                    account=line.account,
                    debit=round_money(line.debit),
                    credit=round_money(line.credit),
                    cost_center=line.cost_center,
                    project=line.project,
                    description=line.description,
                    created_by_id=actor_id,
                )
            )
        self._session.add(entry)
        self._session.flush()

        self._auditor.record_journal_posted(
            entry.id, idempotency_key, str(debits), len(postable), actor_id
        )
        logger.info(
            "journal_posted",
            extra={
                "entry_id": str(entry.id),
                "idempotency_key": idempotency_key,
                "company": company,
                "source": source,
                "total": str(debits),
                "line_count": len(postable),
                "seq": seq,
            },
        )
        return PostedJournal(
            entry_id=entry.id,
            idempotency_key=idempotency_key,
            seq=seq,
            total=debits,
            line_count=len(postable),
        )

    def trial_balance(self, company: str, period: Period) -> list[TrialBalanceRow]:
        """
        Debit and credit totals per (account, cost_center, project) for
        entries dated within ``period``.
        """
        rows = self._session.execute(
            select(
                JournalLine.account,
                JournalLine.cost_center,
                JournalLine.project,
                func.sum(JournalLine.debit),
                func.sum(JournalLine.credit),
            )
            .join(JournalEntry, JournalLine.entry_id == JournalEntry.id)
            .where(
                JournalEntry.company == company,
                JournalEntry.entry_date >= period.first_day,
                JournalEntry.entry_date <= period.last_day,
            )
            .group_by(JournalLine.account, JournalLine.cost_center, JournalLine.project)
            .order_by(JournalLine.account, JournalLine.cost_center, JournalLine.project)
        ).all()

        return [
            TrialBalanceRow(
                account=account,
                cost_center=cost_center,
                project=project,
                debit=round_money(Decimal(str(debit or 0))),
                credit=round_money(Decimal(str(credit or 0))),
            )
            for account, cost_center, project, debit, credit in rows
        ]
