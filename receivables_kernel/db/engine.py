"""
Module: receivables_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management
    and the transactional scope used by every workflow operation.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/ or outer layers.

Invariants enforced:
    - Production runs on PostgreSQL at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) plus version compare-and-set on invoices.
    - ``transaction_scope`` commits on normal exit and rolls back on any
      exception, which is then re-raised unchanged.

Failure modes:
    - RuntimeError if get_engine/get_session_factory is called before
      init_engine_from_url().
    - OperationalError on lost connections or lock timeouts (propagated).
"""

import atexit
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from receivables_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

SessionFactory = Callable[[], Session]

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialize the module-level engine from a PostgreSQL URL.

    A second call replaces the first.  All subsequent get_session_factory()
    calls use this engine.
    """
    global _engine, _SessionFactory

    _engine = create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
        },
    )

    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def transaction_scope(session_factory: SessionFactory) -> Generator[Session, None, None]:
    """
    Run a unit of work in one transaction.

    Usage:
        with transaction_scope(factory) as session:
            session.add(entity)
            # Commits on successful exit, rolls back on exception
    """
    session = session_factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


@contextmanager
def read_only_scope(session_factory: SessionFactory) -> Generator[Session, None, None]:
    """Open a session whose transaction is always rolled back."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create every receivables table on ``engine`` (defaults to the module engine)."""
    from receivables_kernel.db.base import Base
    import receivables_kernel.models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory.  Used by tests."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
