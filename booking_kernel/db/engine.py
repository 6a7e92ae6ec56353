"""
Engine and session management for the ledger database.

Responsibility:
    Build the SQLAlchemy engine for ``database_url``, hold the process-wide
    session factory used by ``BookingFormWorkflow.from_config()``, and give
    every ledger operation its own committed transaction via
    ``session_scope()``.

Backends:
    - PostgreSQL (production): QueuePool with pre-ping, READ COMMITTED.
      Conditional UPDATEs on the ledger row are the only locking needed.
    - SQLite (tests, single-host runs): busy timeout so concurrent claims
      wait for the write lock instead of failing with "database is locked".

Failure modes:
    - RuntimeError from ``get_engine``/``get_session_factory`` before
      ``init_engine_from_url()``.
"""

import atexit
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from booking_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 5,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Create an engine for ``database_url`` without touching module state."""
    if make_url(database_url).get_backend_name() == "sqlite":
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": pool_timeout, "check_same_thread": False},
        )
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
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """Build the process-wide engine and session factory.  Replaces any previous one."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(database_url, echo=echo, **pool_options)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _session_factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _session_factory


@contextmanager
def session_scope(
    factory: Callable[[], Session] | None = None,
) -> Generator[Session, None, None]:
    """Commit on normal exit, roll back and re-raise on error, always close."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create ``booking_form_ledger`` (and its indexes) if missing."""
    from booking_kernel.db.base import Base
    import booking_kernel.models  # noqa: F401

    Base.metadata.create_all(engine or get_engine())
    logger.info("ledger_schema_ready")


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
