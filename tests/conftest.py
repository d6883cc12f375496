"""
Pytest fixtures for the back-office test suite.

Provides:
- In-memory SQLite sessions with working SAVEPOINTs
- A DeterministicClock and a test actor
- Structured log capture

Uses in-memory SQLite for fast tests (no PostgreSQL required).
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice_kernel.db.base import Base
from backoffice_kernel.db.engine import enable_sqlite_savepoints
from backoffice_kernel.domain.clock import DeterministicClock
from backoffice_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from backoffice_kernel.services.auditor_service import AuditorService
from backoffice_kernel.services.journal_service import JournalService
from backoffice_kernel.services.lock_service import RunLockService
from backoffice_modules._orm_registry import import_all_orm_models

TEST_COMPANY = "ACME"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """Backoffice log records emitted during the test, parsed from JSON.

        orchestrator.run_allocation(...)
        assert "run_completed" in [r["message"] for r in captured_logs()]
    """
    buffer = StringIO()
    capture = logging.StreamHandler(buffer)
    capture.setFormatter(StructuredFormatter())
    tree = logging.getLogger("backoffice")
    level = tree.level
    tree.setLevel(logging.DEBUG)
    tree.addHandler(capture)

    yield lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    tree.removeHandler(capture)
    tree.setLevel(level)


# =============================================================================
# Database fixtures
# =============================================================================


def _sqlite_engine():
    """In-memory SQLite engine shared across threads, with SAVEPOINT support."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    enable_sqlite_savepoints(engine)
    import_all_orm_models()
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_engine():
    engine = _sqlite_engine()
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return DeterministicClock(
        fixed_time=datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def actor_id():
    return uuid4()


@pytest.fixture
def company():
    return TEST_COMPANY


@pytest.fixture
def auditor(session, clock):
    return AuditorService(session, clock)


@pytest.fixture
def journal(session, auditor, clock):
    return JournalService(session, auditor, clock)


@pytest.fixture
def locks(session, auditor, clock):
    return RunLockService(session, auditor, clock)
