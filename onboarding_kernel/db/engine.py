"""
Module: onboarding_kernel.db.engine
Responsibility: one process-wide engine and session factory, plus the
    ``session_scope`` unit of work that orchestrators commit through.
Architecture position: Kernel > DB. Imports models only inside
    create_tables/drop_tables so their tables are registered.

Invariants enforced:
    - PostgreSQL (psycopg2) runs at READ COMMITTED with pooled,
      pre-pinged connections; row versions provide compare-and-swap.
    - SQLite opens every transaction with BEGIN IMMEDIATE, so writers
      serialise and SAVEPOINTs behave. The driver's implicit transaction
      handling is switched off.
    - Sessions do not expire objects on commit; DTOs are built from
      committed rows after the scope exits.

Failure modes:
    - RuntimeError from any accessor before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from onboarding_kernel.logging_config import get_logger

logger = get_logger("db.engine")

SQLITE_BUSY_TIMEOUT_MS = 30_000

_engine: Engine | None = None
_factory: sessionmaker[Session] | None = None


def _sqlite_serialised_writes(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    Calling again without ``reset_engine()`` replaces the previous engine.
    """
    global _engine, _factory

    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend == "sqlite":
        engine = create_engine(url, echo=echo, connect_args={"check_same_thread": False})
        _sqlite_serialised_writes(engine)
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _factory = sessionmaker(bind=engine, expire_on_commit=False)
    logger.info(
        "engine_initialized",
        extra={"backend": backend, "database": url.database, "echo": echo},
    )
    return engine


def _require_factory() -> sessionmaker[Session]:
    if _factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _factory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    return _require_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """Factory handed to orchestrators; every operation opens its own session."""
    return _require_factory()


@contextmanager
def session_scope(factory=None) -> Iterator[Session]:
    """
    Commit on clean exit, roll back and re-raise on error, always close.

    ``factory`` defaults to the module-level session factory.
    """
    session = factory() if factory is not None else get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    from onboarding_kernel.db.base import Base
    import onboarding_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    from onboarding_kernel.db.base import Base
    import onboarding_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the factory. Used by test teardown."""
    global _engine, _factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _factory = None


atexit.register(lambda: _engine.dispose() if _engine is not None else None)
