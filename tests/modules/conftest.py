"""
Fixtures for module service and run tests.

Every fixture shares the test session, so a run's committed postings are
visible to the assertions that follow it.
"""

from datetime import date
from decimal import Decimal

import pytest

from backoffice_kernel.services.journal_service import JournalLineInput
from backoffice_runs.orchestrator import RunOrchestrator


@pytest.fixture
def orchestrator(session, clock, actor_id):
    return RunOrchestrator.from_session(session, clock=clock, actor_id=actor_id)


def post_expense(
    journal,
    company,
    actor_id,
    amount,
    cost_center="CC-ADMIN",
    account="6100",
    offset_account="2000",
    entry_date=date(2026, 1, 15),
    key=None,
    project=None,
):
    """Post a balanced expense entry for allocation tests to draw on."""
    amount = Decimal(amount)
    return journal.post(
        company=company,
        entry_date=entry_date,
        lines=[
            JournalLineInput.dr(account, amount, cost_center=cost_center, project=project),
            JournalLineInput.cr(offset_account, amount),
        ],
        memo="Seed expense",
        source="test",
        idempotency_key=key or f"seed:{account}:{cost_center}:{entry_date}:{amount}",
        actor_id=actor_id,
    )
