"""
Process-wide database handle.

One engine and one session factory per process, installed by
``init_engine_from_url`` and torn down by ``reset_engine``.  Services never
create sessions themselves: entry points open a ``session_scope()`` (or the
scheduler asks ``get_session_factory()`` for one session per tick) and pass
the session down.

PostgreSQL connections use READ COMMITTED; rows that need stronger
guarantees (run rows, sequence counters, run locks) are protected by row
locks and unique constraints instead of isolation level.  SQLite URLs skip
pool tuning and are meant for tests and local tooling.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from backoffice_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")


@dataclass
class _Database:
    engine: Engine
    sessions: sessionmaker[Session]


_db: _Database | None = None


def enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy issue BEGIN on pysqlite so SAVEPOINTs nest correctly.

    Run items and lock acquisition rely on ``begin_nested()``; pysqlite's
    own implicit transactions would end the outer transaction on RELEASE.
    """

    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _require() -> _Database:
    if _db is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _db


def init_engine_from_url(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Create the process engine for ``database_url``.

    Calling it again disposes the previous engine first.  Pool arguments
    only apply to server databases.
    """
    global _db

    backend = make_url(database_url).get_backend_name()
    options: dict = {"echo": echo}
    if backend != "sqlite":
        options.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )

    reset_engine()
    engine = create_engine(database_url, **options)
    if backend == "sqlite":
        enable_sqlite_savepoints(engine)
    _db = _Database(engine=engine, sessions=sessionmaker(bind=engine, expire_on_commit=False))

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"backend": backend, "pool_size": pool_size if backend != "sqlite" else None, "echo": echo},
    )
    return engine


def get_engine() -> Engine:
    return _require().engine


def get_session_factory() -> sessionmaker[Session]:
    return _require().sessions


def get_session() -> Session:
    """A new, unmanaged session.  The caller commits and closes it."""
    return _require().sessions()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on clean exit, roll back and re-raise on error, always close.

        with session_scope() as session:
            orchestrator = RunOrchestrator.from_session(session, clock, actor_id)
            orchestrator.run_dunning("ACME", dry_run=False)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the kernel, run and module tables on the current engine."""
    from backoffice_kernel.db.base import Base
    from backoffice_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    from backoffice_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine (if any) and forget the session factory."""
    global _db
    if _db is not None:
        _db.engine.dispose()
        _db = None
