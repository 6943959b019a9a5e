"""
Module: fee_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  This is the single point of database
    connection configuration for the entire system.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers
    (except for create_tables/drop_tables which import models).

Invariants enforced:
    - Two explicit transaction scopes:
        session_scope()       READ COMMITTED, for corrective / read work.
        serializable_scope()  SERIALIZABLE, for money-moving work.
      Sessions opened by serializable_scope() carry
      ``session.info["serializable"] = True`` so that services can refuse
      to move money outside one (see require_serializable()).
    - PostgreSQL is the production backend.  SQLite is supported for local
      runs and tests: every SQLite transaction starts with BEGIN IMMEDIATE,
      so writers serialize on the database lock.
    - Serialization failures surface as ConcurrencyConflictError once
      run_with_conflict_retry() has exhausted its attempts.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory called before
      init_engine_from_url().
    - ConcurrencyConflictError on repeated serialization failures.
"""

import atexit
import time
from contextlib import contextmanager
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool, StaticPool

from fee_kernel.exceptions import ConcurrencyConflictError
from fee_kernel.logging_config import get_logger

logger = get_logger("db.engine")

T = TypeVar("T")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None
_SerializableFactory: sessionmaker[Session] | None = None

# PostgreSQL SQLSTATEs that mean "retry the whole transaction"
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def _install_sqlite_listeners(engine: Engine, busy_timeout_ms: int) -> None:
    """Take over SQLite transaction control so writers serialize.

    pysqlite's own BEGIN handling is disabled and every transaction is
    opened with BEGIN IMMEDIATE, which acquires the write lock up front.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout_ms: int = 60_000,
) -> Engine:
    """
    Initialize the SQLAlchemy engine from a database URL.

    Postconditions: Module-level engine and both session factories are
        initialized.  A second call overwrites the first.

    Args:
        database_url: PostgreSQL or SQLite URL.
        echo: If True, log all SQL statements.
        pool_size: Number of pooled connections (PostgreSQL).
        max_overflow: Max connections beyond pool_size (PostgreSQL).
        pool_pre_ping: Test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
        sqlite_busy_timeout_ms: How long a SQLite writer waits for the lock.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory, _SerializableFactory

    if database_url.startswith("sqlite"):
        in_memory = ":memory:" in database_url or database_url in (
            "sqlite://",
            "sqlite+pysqlite://",
        )
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool if in_memory else NullPool,
            connect_args={
                "check_same_thread": False,
                "timeout": sqlite_busy_timeout_ms / 1000,
            },
        )
        _install_sqlite_listeners(_engine, sqlite_busy_timeout_ms)
        serializable_bind = _engine
        dialect = "sqlite"
    else:
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
        serializable_bind = _engine.execution_options(isolation_level="SERIALIZABLE")
        dialect = _engine.dialect.name

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
    _SerializableFactory = sessionmaker(bind=serializable_bind, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )

    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """Get a new READ COMMITTED session instance."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Useful for multi-threaded scenarios where each thread needs its own session.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Usage:
        with session_scope() as session:
            session.add(entity)
    """
    session = get_session()
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
def serializable_scope() -> Generator[Session, None, None]:
    """
    Transactional scope at SERIALIZABLE isolation for money-moving work.

    Same commit/rollback contract as session_scope().  The yielded session
    is marked so that require_serializable() accepts it.
    """
    if _SerializableFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    session = _SerializableFactory()
    session.info["serializable"] = True
    logger.debug("serializable_transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("serializable_transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("serializable_transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def require_serializable(session: Session) -> None:
    """Refuse to continue unless ``session`` came from serializable_scope()."""
    if not session.info.get("serializable"):
        raise RuntimeError(
            "Money-moving operations must run inside serializable_scope()"
        )


def is_serialization_failure(exc: BaseException) -> bool:
    """True when ``exc`` means the whole transaction may be retried."""
    if isinstance(exc, ConcurrencyConflictError):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    message = str(orig).lower()
    return (
        "could not serialize" in message
        or "deadlock detected" in message
        or "database is locked" in message
    )


def run_with_conflict_retry(
    fn: Callable[[], T],
    *,
    operation: str,
    entity_id=None,
    max_retries: int = 3,
    base_delay_ms: int = 50,
) -> T:
    """
    Run ``fn`` (which opens its own transaction) and retry on conflicts.

    Each retry re-runs the whole unit of work, so every read happens again
    inside the new transaction.  Back-off is linear: base_delay * attempt.

    Raises:
        ConcurrencyConflictError: when every attempt hit a conflict.
        Any non-conflict exception from ``fn`` immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            if not is_serialization_failure(exc):
                raise
            if attempt >= max_retries:
                logger.error(
                    "conflict_retries_exhausted",
                    extra={
                        "operation": operation,
                        "entity_id": str(entity_id) if entity_id else None,
                        "attempts": attempt,
                    },
                )
                raise ConcurrencyConflictError(operation, entity_id, attempt) from exc
            logger.warning(
                "conflict_retry",
                extra={
                    "operation": operation,
                    "entity_id": str(entity_id) if entity_id else None,
                    "attempt": attempt,
                    "max_retries": max_retries,
                },
            )
            time.sleep(base_delay_ms * attempt / 1000)


def create_tables() -> None:
    """
    Create all tables defined in the models.

    Preconditions: Engine must be initialized via init_engine_from_url().
    """
    from fee_kernel.db.base import Base
    import fee_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from fee_kernel.db.base import Base
    import fee_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """
    Reset the engine and session factories.

    Useful for test cleanup.
    """
    global _engine, _SessionFactory, _SerializableFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None
    _SerializableFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def is_postgres() -> bool:
    """Check if the current engine is PostgreSQL."""
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"
