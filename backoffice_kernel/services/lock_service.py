"""
RunLockService -- row-backed safety locks for commit runs.

Responsibility:
    Marks a scope (an allocation rule in a period, a revenue period, an
    invoice, an AP invoice) as taken so the posting that owns it happens
    at most once.  Locks are plain rows: they live and die with the
    transaction that wrote them, so a dry run (whose savepoints are rolled
    back) never leaves one behind.

Architecture position:
    Kernel > Services.  Used by run tasks and module services.

Invariants enforced:
    - UNIQUE (lock_kind, company, scope_key) backs ``acquire``.  The insert
      runs in a savepoint so a losing racer gets LockHeldError, not a
      poisoned session.
    - Every acquire and release is audited.

Failure modes:
    - LockHeldError when the scope is already locked.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.exceptions import LockHeldError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_event import AuditAction
from backoffice_kernel.models.run_lock import RunLock
from backoffice_kernel.services.auditor_service import AuditorService

logger = get_logger("services.locks")


class LockKind(str, Enum):
    ALLOC_RULE = "alloc_rule"  # scope: "{period}:{rule_code}"
    REVENUE_PERIOD = "revenue_period"  # scope: "{period}"
    INVOICE_POST = "invoice_post"  # scope: invoice id
    AP_INVOICE = "ap_invoice"  # scope: AP invoice id


class RunLockService:
    """Acquire, query and release safety locks.  Does NOT commit."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ):
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()

    def get(self, kind: LockKind, company: str, scope_key: str) -> RunLock | None:
        return self._session.execute(
            select(RunLock).where(
                RunLock.lock_kind == kind.value,
                RunLock.company == company,
                RunLock.scope_key == scope_key,
            )
        ).scalar_one_or_none()

    def is_locked(self, kind: LockKind, company: str, scope_key: str) -> bool:
        return self.get(kind, company, scope_key) is not None

    def held(self, kind: LockKind, company: str) -> list[str]:
        """Scope keys currently locked for ``kind`` in ``company``, sorted."""
        return list(
            self._session.execute(
                select(RunLock.scope_key)
                .where(RunLock.lock_kind == kind.value, RunLock.company == company)
                .order_by(RunLock.scope_key)
            ).scalars()
        )

    def acquire(
        self,
        kind: LockKind,
        company: str,
        scope_key: str,
        actor_id: UUID,
        run_id: UUID | None = None,
    ) -> RunLock:
        """
        Take the lock for a scope.

        Raises:
            LockHeldError: The scope is already locked.
        """
        existing = self.get(kind, company, scope_key)
        if existing is not None:
            raise LockHeldError(
                kind.value,
                company,
                scope_key,
                str(existing.run_id) if existing.run_id else None,
            )

        lock = RunLock(
            lock_kind=kind.value,
            company=company,
            scope_key=scope_key,
            run_id=run_id,
            acquired_at=self._clock.now(),
            created_by_id=actor_id,
        )
        savepoint = self._session.begin_nested()
        try:
            self._session.add(lock)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise LockHeldError(kind.value, company, scope_key) from None

        self._auditor.record(
            "RunLock",
            lock.id,
            AuditAction.LOCK_ACQUIRED,
            actor_id,
            {
                "lock_kind": kind.value,
                "company": company,
                "scope_key": scope_key,
                "run_id": str(run_id) if run_id else None,
            },
        )
        logger.info(
            "lock_acquired",
            extra={
                "lock_kind": kind.value,
                "company": company,
                "scope_key": scope_key,
            },
        )
        return lock

    def release(
        self,
        kind: LockKind,
        company: str,
        scope_key: str,
        actor_id: UUID,
    ) -> bool:
        """Drop the lock.  Returns False when it was not held."""
        lock = self.get(kind, company, scope_key)
        if lock is None:
            return False

        lock_id = lock.id
        self._session.delete(lock)
        self._session.flush()

        self._auditor.record(
            "RunLock",
            lock_id,
            AuditAction.LOCK_RELEASED,
            actor_id,
            {"lock_kind": kind.value, "company": company, "scope_key": scope_key},
        )
        logger.info(
            "lock_released",
            extra={
                "lock_kind": kind.value,
                "company": company,
                "scope_key": scope_key,
            },
        )
        return True
