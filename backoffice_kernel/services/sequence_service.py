"""
SequenceService -- gap-tolerant, strictly increasing numbers per name.

Runs, journal entries, audit events and invoices draw their ``seq`` from a
``sequence_counters`` row read with ``SELECT ... FOR UPDATE``, so concurrent
writers queue on the row instead of racing on ``max(seq) + 1``.  The
increment belongs to the caller's transaction: a rolled-back savepoint (a
dry-run item, a failed item) hands its numbers back.
"""

from sqlalchemy import String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from backoffice_kernel.db.base import Base
from backoffice_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), unique=True)
    current_value: Mapped[int] = mapped_column(default=0)


class SequenceService:
    """Does not commit; numbers become durable with the caller's transaction."""

    RUN = "run"
    JOURNAL_ENTRY = "journal_entry"
    AUDIT_EVENT = "audit_event"
    INVOICE = "invoice"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        counter = self._lock(sequence_name) or self._create(sequence_name)
        counter.current_value += 1
        self._session.flush()
        logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": counter.current_value})
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for a sequence never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def _lock(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create(self, sequence_name: str) -> SequenceCounter:
        """Insert the counter at zero; on a first-use race, lock the winner's row."""
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race", extra={"sequence_name": sequence_name})
            winner = self._lock(sequence_name)
            if winner is None:
                raise
            return winner
        savepoint.commit()
        return counter
