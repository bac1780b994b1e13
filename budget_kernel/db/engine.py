"""
Module: budget_kernel.db.engine
Responsibility: SQLAlchemy engine construction, schema creation
    and the transactional scope.  The single point of database
    connection configuration for the ledger's SQL store.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/ or domain/
    (create_tables imports models/ to register the ORM tables).

Invariants enforced:
    - PostgreSQL sessions run READ COMMITTED; stronger isolation for
      allocation checks comes from explicit row locks (SELECT ... FOR UPDATE)
      taken by the SQL ledger store.
    - SQLite (used for local runs and tests) shares one engine across
      threads; row locking is a no-op there and the in-process allocation
      guard provides exclusion.

Failure modes:
    - SQLAlchemy errors raised inside session_scope propagate after rollback.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from budget_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> Engine:
    """
    Create an engine configured for ``database_url``'s dialect.

    Args:
        database_url: SQLAlchemy URL (postgresql://... or sqlite:///...).
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (server databases only).
        max_overflow: Connections beyond pool_size (server databases only).
        pool_timeout: Seconds to wait for a pooled connection.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool_timeout},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_timeout=pool_timeout,
        isolation_level="READ COMMITTED",
    )

@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit the session is committed and closed.
        On ANY exception -- including KeyboardInterrupt from an abandoned
        caller -- the session is rolled back and closed, and the exception
        is re-raised.
    """
    session = factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except BaseException:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()

def create_tables(engine: Engine) -> None:
    """Create all ledger tables (idempotent)."""
    from budget_kernel.db.base import Base
    import budget_kernel.models  # noqa: F401  registers ORM tables

    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"dialect": engine.dialect.name})

def drop_tables(engine: Engine) -> None:
    """Drop all ledger tables. FOR TESTING ONLY."""
    from budget_kernel.db.base import Base
    import budget_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
