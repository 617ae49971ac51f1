"""
Database engine and session factory.

One process-wide engine, created by ``init_engine_from_url``.  Services
never reach for it themselves: callers build sessions from the factory and
hand them to the orchestrator, the reconciliation service or the batch
runner.

PostgreSQL (production)
    READ COMMITTED, pooled connections with pre-ping, an optional
    per-connection ``statement_timeout``.  Filing transitions combine
    ``SELECT ... FOR UPDATE`` with the record's version counter.

SQLite (tests, local use)
    One file per database, foreign keys on, and ``pool_timeout`` doubling
    as the busy timeout so concurrent writers wait instead of failing.

Sessions are created with ``expire_on_commit=False``: DTOs are built from
ORM rows after the unit of work has committed.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from compliance_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _sqlite_engine(database_url: str, echo: bool, busy_timeout: int) -> Engine:
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"timeout": busy_timeout, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _foreign_keys_on(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def _postgres_engine(
    database_url: str,
    echo: bool,
    pool_size: int,
    max_overflow: int,
    pool_timeout: int,
    pool_recycle: int,
    statement_timeout_ms: int | None,
) -> Engine:
    connect_args = {}
    if statement_timeout_ms is not None:
        connect_args["options"] = f"-c statement_timeout={statement_timeout_ms}"
    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
        connect_args=connect_args,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    statement_timeout_ms: int | None = None,
) -> Engine:
    """
    Create the process engine and session factory for ``database_url``.

    ``pool_timeout`` bounds the wait for a pooled PostgreSQL connection and
    is the busy timeout on SQLite.  ``statement_timeout_ms`` applies to
    PostgreSQL only.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = _sqlite_engine(database_url, echo, pool_timeout)
    else:
        _engine = _postgres_engine(
            database_url,
            echo,
            pool_size,
            max_overflow,
            pool_timeout,
            pool_recycle,
            statement_timeout_ms,
        )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_timeout": pool_timeout,
            "statement_timeout_ms": statement_timeout_ms,
        },
    )
    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that need one session per thread (the batch runner)."""
    return _require_factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Session that commits on clean exit and rolls back on any exception.

        with session_scope() as session:
            FilingSelector(session).list_overdue(clock.today())
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
    """
    Create the compliance tables and register the immutability listeners.

    Listener registration lives here so any process that creates the schema
    also gets lock and audit enforcement.
    """
    from compliance_kernel.db.base import Base
    from compliance_kernel.db.immutability import register_immutability_listeners
    import compliance_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())
    register_immutability_listeners()
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables() -> None:
    from compliance_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
