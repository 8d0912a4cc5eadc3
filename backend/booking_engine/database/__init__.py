"""
Database engine, session factory, and metadata shared across the engine.
"""

from __future__ import annotations

from datetime import datetime
import logging
import random
import time
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from ..core.config import settings
from ..core.exceptions import TransientException, is_db_pool_exhaustion
from .session_utils import use_immediate_transactions

logger = logging.getLogger(__name__)

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
    "future": True,
}


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """SQLite gets a single-connection friendly config; everything else a pool."""
    if db_url.startswith("sqlite"):
        return {"future": True, "connect_args": {"check_same_thread": False, "timeout": 30}}
    return dict(_DEFAULT_POOL_KWARGS)


engine: Engine = create_engine(settings.database_url, **_build_engine_kwargs(settings.database_url))
if engine.dialect.name == "sqlite":
    use_immediate_transactions(engine)


# Log pool events for monitoring
@event.listens_for(engine, "connect")
def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["connect_time"] = datetime.now()
    logger.debug("Database connection established")


@event.listens_for(engine, "checkout")
def receive_checkout(dbapi_connection: Any, connection_record: Any, connection_proxy: Any) -> None:
    logger.debug("Connection checked out from pool")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


T = TypeVar("T")
# Contention and dropped-connection errors that are safe to replay as a whole unit.
_RETRYABLE_ERROR_SNIPPETS = (
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
    "could not serialize access",
    "deadlock detected",
    "lock not available",
    "could not obtain lock",
    "database is locked",
)


def is_retryable_db_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    if any(snippet in message for snippet in _RETRYABLE_ERROR_SNIPPETS):
        return True
    return is_db_pool_exhaustion(exc)


def _retry_delay(attempt: int) -> float:
    base = 0.1 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


def with_db_retry(op_name: str, func: Callable[[], T], *, max_attempts: int | None = None) -> T:
    """
    Execute a whole unit of work, retrying on transient contention.

    Only safe for operations that are atomic and idempotent-with-key
    (book, cancel, reschedule).
    """
    limit = max_attempts or settings.db_retry_attempts
    attempt = 1
    while True:
        try:
            return func()
        except (TransientException, OperationalError) as exc:
            retryable = isinstance(exc, TransientException) or is_retryable_db_error(exc)
            if attempt >= limit or not retryable:
                raise

            delay = _retry_delay(attempt)
            logger.warning(
                "Transient DB failure detected, retrying",
                extra={
                    "event": "db_retry",
                    "op": op_name,
                    "attempt": attempt,
                    "delay": delay,
                    "error": str(exc),
                },
            )
            time.sleep(delay)
            attempt += 1


__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "get_db",
    "is_retryable_db_error",
    "with_db_retry",
]
