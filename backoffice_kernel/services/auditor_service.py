"""
AuditorService -- the hash-chained audit log.

Every run transition, lock, journal posting and document state change
appends one ``AuditEvent``.  Each event's hash covers its entity, action,
payload hash and the previous event's hash, so editing any stored payload
or relinking any event is detectable by ``validate_chain()``.

Ordering comes from SequenceService (``audit_event`` counter), never from
``max(seq) + 1``.  The service only appends and flushes; the caller owns
the transaction, which is why a rolled-back dry run leaves no item-level
events behind.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.exceptions import AuditChainBrokenError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_event import AuditAction, AuditEvent
from backoffice_kernel.services.sequence_service import SequenceService
from backoffice_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")

RUN_ENTITY = "Run"
JOURNAL_ENTITY = "JournalEntry"


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """The audit history of one entity, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(entry.action for entry in self.entries)

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


def _event_hash(event: AuditEvent, prev_hash: str | None) -> str:
    return hash_audit_event(
        entity_type=event.entity_type,
        entity_id=str(event.entity_id),
        action=event.action,
        payload_hash=hash_payload(event.payload or {}),
        prev_hash=prev_hash,
    )


class AuditorService:

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append an event chained to the current head of the log."""
        seq = self._sequence.next_value(SequenceService.AUDIT_EVENT)
        head = self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

        event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=to_json_safe(payload or {}),
            prev_hash=head,
        )
        event.payload_hash = hash_payload(event.payload)
        event.hash = _event_hash(event, head)
        self._session.add(event)
        self._session.flush()

        logger.debug(
            "audit_event_recorded",
            extra={"entity_type": entity_type, "entity_id": str(entity_id), "action": action.value, "seq": seq},
        )
        return event

    # -------------------------------------------------------------------------
    # Run lifecycle and ledger shorthands
    # -------------------------------------------------------------------------

    def record_run_submitted(
        self,
        run_id: UUID,
        run_type: str,
        company: str,
        mode: str,
        idempotency_key: str,
        actor_id: UUID,
    ) -> AuditEvent:
        payload = {"run_type": run_type, "company": company, "mode": mode, "idempotency_key": idempotency_key}
        return self.record(RUN_ENTITY, run_id, AuditAction.RUN_SUBMITTED, actor_id, payload)

    def record_run_started(self, run_id: UUID, actor_id: UUID) -> AuditEvent:
        return self.record(RUN_ENTITY, run_id, AuditAction.RUN_STARTED, actor_id)

    def record_run_completed(
        self, run_id: UUID, status: str, succeeded: int, failed: int, skipped: int, actor_id: UUID,
    ) -> AuditEvent:
        payload = {"status": status, "succeeded": succeeded, "failed": failed, "skipped": skipped}
        return self.record(RUN_ENTITY, run_id, AuditAction.RUN_COMPLETED, actor_id, payload)

    def record_run_failed(self, run_id: UUID, error: str, actor_id: UUID) -> AuditEvent:
        return self.record(RUN_ENTITY, run_id, AuditAction.RUN_FAILED, actor_id, {"error": error})

    def record_run_cancelled(self, run_id: UUID, actor_id: UUID) -> AuditEvent:
        return self.record(RUN_ENTITY, run_id, AuditAction.RUN_CANCELLED, actor_id)

    def record_journal_posted(
        self, entry_id: UUID, idempotency_key: str, total: str, line_count: int, actor_id: UUID,
    ) -> AuditEvent:
        payload = {"idempotency_key": idempotency_key, "total": total, "line_count": line_count}
        return self.record(JOURNAL_ENTITY, entry_id, AuditAction.JOURNAL_POSTED, actor_id, payload)

    # -------------------------------------------------------------------------
    # Verification and queries
    # -------------------------------------------------------------------------

    def validate_chain(self) -> bool:
        """Walk the log in seq order, recomputing hashes and links.

        Raises:
            AuditChainBrokenError: At the first event whose link or hash
                does not match.
        """
        expected_prev: str | None = None
        count = 0
        for event in self._session.execute(select(AuditEvent).order_by(AuditEvent.seq)).scalars():
            if event.prev_hash != expected_prev:
                logger.critical("audit_chain_broken", extra={"seq": event.seq, "reason": "link"})
                raise AuditChainBrokenError(str(event.id), str(expected_prev), str(event.prev_hash))
            recomputed = _event_hash(event, event.prev_hash)
            if recomputed != event.hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq, "reason": "hash"})
                raise AuditChainBrokenError(str(event.id), recomputed, event.hash)
            expected_prev = event.hash
            count += 1

        logger.info("audit_chain_valid", extra={"event_count": count})
        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).scalars()
        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=e.action,
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )
