"""
Helpers for inspecting the dialect behind a SQLAlchemy session.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import event, inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

# Dialects where SELECT ... FOR UPDATE actually takes a row lock.
_ROW_LOCK_DIALECTS = frozenset({"postgresql", "mysql", "mariadb", "oracle", "mssql"})


def resolve_session_bind(session: Session) -> Optional[Connection | Engine]:
    """Return the engine/connection bound to a session without direct .bind access."""
    try:
        bind = session.get_bind()
        if bind is not None:
            return bind
    except Exception:
        bind = None

    try:
        insp = inspect(session)
    except Exception:
        return None

    return getattr(insp, "bind", None)


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """Return the dialect name, or ``default`` when the bind cannot be resolved."""
    bind = resolve_session_bind(session)
    if bind is None:
        return default
    dialect = getattr(bind, "dialect", None)
    name = getattr(dialect, "name", None)
    return name or default


def supports_row_locks(session: Session) -> bool:
    """SQLite serializes writers per database, so FOR UPDATE is a no-op there."""
    return get_dialect_name(session) in _ROW_LOCK_DIALECTS


def use_immediate_transactions(engine: Engine) -> None:
    """
    Make every pysqlite transaction take the database write lock up front.

    pysqlite defers BEGIN until the first write, so two units of work can both
    read a free slot before either inserts. BEGIN IMMEDIATE serializes them at
    their first statement, standing in for the provider row lock.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
