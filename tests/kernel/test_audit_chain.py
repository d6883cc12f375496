"""
Tests for backoffice_kernel.services.auditor_service.

Every audit event links to its predecessor's hash; tampering with a
payload or a link breaks validation.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from backoffice_kernel.exceptions import AuditChainBrokenError
from backoffice_kernel.models.audit_event import AuditAction, AuditEvent


class TestAuditChain:
    def test_genesis_event_has_no_prev_hash(self, auditor, actor_id):
        event = auditor.record("Thing", uuid4(), AuditAction.RULE_CREATED, actor_id, {"a": 1})
        assert event.prev_hash is None
        assert event.seq == 1

    def test_events_link_to_predecessor(self, auditor, actor_id):
        first = auditor.record("Thing", uuid4(), AuditAction.RULE_CREATED, actor_id)
        second = auditor.record("Thing", uuid4(), AuditAction.RULE_CREATED, actor_id)

        assert second.prev_hash == first.hash
        assert second.seq == first.seq + 1

    def test_valid_chain_validates(self, auditor, actor_id):
        for _ in range(5):
            auditor.record("Thing", uuid4(), AuditAction.RULE_CREATED, actor_id, {"n": 1})
        assert auditor.validate_chain() is True

    def test_empty_chain_is_valid(self, auditor):
        assert auditor.validate_chain() is True

    def test_tampered_payload_breaks_chain(self, session, auditor, actor_id):
        auditor.record("Thing", uuid4(), AuditAction.RULE_CREATED, actor_id, {"amount": "10"})
        auditor.record("Thing", uuid4(), AuditAction.RULE_CREATED, actor_id, {"amount": "20"})

        event = session.execute(
            select(AuditEvent).order_by(AuditEvent.seq).limit(1)
        ).scalar_one()
        event.payload = {"amount": "1000"}
        session.flush()

        with pytest.raises(AuditChainBrokenError):
            auditor.validate_chain()

    def test_broken_link_detected(self, session, auditor, actor_id):
        auditor.record("Thing", uuid4(), AuditAction.RULE_CREATED, actor_id)
        second = auditor.record("Thing", uuid4(), AuditAction.RULE_CREATED, actor_id)
        second.prev_hash = "0" * 64
        session.flush()

        with pytest.raises(AuditChainBrokenError):
            auditor.validate_chain()


class TestAuditTrace:
    def test_trace_lists_entity_events_in_order(self, auditor, actor_id):
        entity = uuid4()
        auditor.record("Invoice", entity, AuditAction.INVOICE_CREATED, actor_id)
        auditor.record("Invoice", uuid4(), AuditAction.INVOICE_CREATED, actor_id)
        auditor.record("Invoice", entity, AuditAction.INVOICE_FINALIZED, actor_id)

        trace = auditor.get_trace("Invoice", entity)

        assert trace.actions == ("invoice_created", "invoice_finalized")
        assert trace.last_action == "invoice_finalized"

    def test_unknown_entity_has_empty_trace(self, auditor):
        assert auditor.get_trace("Invoice", uuid4()).is_empty
