"""
Module: fleet_kernel.db.engine
Responsibility: Engine initialization, session factory management and the
    transactional scope every workflow operation runs in.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/ or outer layers (create_tables imports
    models to register their tables).

Invariants enforced:
    - PostgreSQL sessions run READ COMMITTED; hot rows (sequence counters,
      contract balances) are taken with SELECT ... FOR UPDATE.
    - SQLite connections open every transaction with BEGIN IMMEDIATE, so a
      writer holds the database lock from its first read.  This gives the
      same read-check-write serialization as the row locks above.
    - run_in_transaction commits all or nothing.  Transient store failures
      (deadlock, serialization failure, lock timeout, "database is locked")
      re-run the whole unit of work up to the retry budget; business errors
      propagate on the first attempt.

Failure modes:
    - RuntimeError if the engine is used before init_engine_from_url().
    - TransientStoreError once the retry budget is spent.
"""

import atexit
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from fleet_kernel.exceptions import TransientStoreError
from fleet_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

T = TypeVar("T")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for transient store errors."""

    max_attempts: int = 5
    backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")


_retry_policy = RetryPolicy()

# SQLSTATE codes: serialization_failure, deadlock_detected, lock_not_available
_TRANSIENT_PGCODES = frozenset({"40001", "40P01", "55P03"})
_TRANSIENT_MESSAGES = (
    "database is locked",
    "deadlock detected",
    "could not serialize access",
    "lock timeout",
)


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    busy_timeout: float = 30.0,
) -> Engine:
    """
    Initialize the engine from a PostgreSQL or SQLite URL.

    A second call replaces the first.

    Args:
        database_url: ``postgresql://...`` or ``sqlite:///path``.
        echo: If True, log all SQL statements.
        pool_size: PostgreSQL pool size.
        max_overflow: PostgreSQL connections beyond pool_size.
        pool_pre_ping: Test pooled connections before use.
        busy_timeout: Seconds a SQLite writer waits for the database lock.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": busy_timeout},
        )
        _install_sqlite_locking(_engine)
        dialect = "sqlite"
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            isolation_level="READ COMMITTED",
        )
        dialect = _engine.dialect.name

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "echo": echo},
    )

    return _engine


def _install_sqlite_locking(engine: Engine) -> None:
    """Take pysqlite's transaction handling over and emit BEGIN IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """Session factory for callers that need one session per thread."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def set_retry_policy(policy: RetryPolicy) -> None:
    global _retry_policy
    _retry_policy = policy


def get_retry_policy() -> RetryPolicy:
    return _retry_policy


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Transactional scope: commit on normal exit, rollback and re-raise otherwise.

    Usage:
        with session_scope() as session:
            ledger = ContractLedger(session, clock)
            ledger.deduct(contract_id, amount, context)
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


def is_transient_error(exc: BaseException) -> bool:
    """True for lock/serialization failures worth re-running the unit for."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode in _TRANSIENT_PGCODES:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(fragment in message for fragment in _TRANSIENT_MESSAGES)


def run_in_transaction(
    work: Callable[[Session], T],
    *,
    session_factory: sessionmaker[Session] | None = None,
    policy: RetryPolicy | None = None,
) -> T:
    """
    Run ``work(session)`` in a fresh session and commit.

    The whole callable re-runs on transient store errors, so it must derive
    everything it writes from what it reads inside the session.

    Raises:
        TransientStoreError: retry budget exhausted.
        Whatever ``work`` raises otherwise, after rollback.
    """
    factory = session_factory or get_session_factory()
    policy = policy or _retry_policy
    last_error: BaseException | None = None

    for attempt in range(1, policy.max_attempts + 1):
        session = factory()
        try:
            result = work(session)
            session.commit()
            if attempt > 1:
                logger.info(
                    "transaction_committed_after_retry",
                    extra={"attempt": attempt},
                )
            return result
        except DBAPIError as exc:
            session.rollback()
            if not is_transient_error(exc):
                raise
            last_error = exc
            logger.warning(
                "transaction_transient_failure",
                extra={
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "error": str(exc.orig if exc.orig is not None else exc),
                },
            )
            if attempt < policy.max_attempts:
                time.sleep(policy.backoff_seconds * attempt)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    logger.error(
        "transaction_retry_budget_exhausted",
        extra={"attempts": policy.max_attempts},
    )
    raise TransientStoreError(policy.max_attempts, str(last_error))


def create_tables() -> None:
    """Create every table registered on Base.metadata."""
    from fleet_kernel.db.base import Base
    import fleet_kernel.models  # noqa: F401  registers tables

    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"tables": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop all tables. Primarily for testing."""
    from fleet_kernel.db.base import Base
    import fleet_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def is_postgres() -> bool:
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"
