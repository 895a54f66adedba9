"""Engine and session helpers."""

from __future__ import annotations

import sqlite3
from typing import Any, Callable

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..settings import DatabaseSettings

SQLITE_BUSY_TIMEOUT_MS = 5000


def _database_url(raw: str) -> URL:
    """Parse ``raw`` and route plain PostgreSQL URLs through psycopg 3."""
    url = make_url(raw)
    if url.drivername in {"postgres", "postgresql"}:
        url = url.set(drivername="postgresql+psycopg")
    return url


def _is_in_memory(url: URL) -> bool:
    return url.database in (None, "", ":memory:") or "mode=memory" in str(url)


def _sqlite_pragmas(wal: bool) -> Callable[[sqlite3.Connection, Any], None]:
    def configure(dbapi_connection: sqlite3.Connection, _: Any) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
            if wal:
                cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()

    return configure


def create_engine_from_settings(settings: DatabaseSettings) -> Engine:
    """Create a SQLAlchemy engine for SQLite or PostgreSQL.

    An in-memory SQLite database lives on one shared connection, so every
    session of the store and the database caches sees the same data.
    """
    url = _database_url(settings.url)

    if url.get_backend_name() != "sqlite":
        return create_engine(url, echo=settings.echo, pool_pre_ping=True, pool_timeout=settings.pool_timeout)

    in_memory = _is_in_memory(url)
    engine_kwargs: dict[str, Any] = {"echo": settings.echo, "connect_args": {"check_same_thread": False}}
    if in_memory:
        engine_kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **engine_kwargs)
    event.listen(engine, "connect", _sqlite_pragmas(settings.sqlite_wal and not in_memory))
    return engine


def create_session_maker(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory whose documents stay readable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


def is_postgresql(engine: Engine) -> bool:
    """Return True if the engine talks to PostgreSQL."""
    return engine.dialect.name == "postgresql"


__all__ = [
    "create_engine_from_settings",
    "create_session_maker",
    "is_postgresql",
]
