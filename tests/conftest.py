"""Shared pytest fixtures for prospect processor tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Generator, Iterable

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from prospectprocessor.db import apply_migrations, create_engine_from_settings, create_session_maker
from prospectprocessor.db.store import DocumentStore, WriteBatch
from prospectprocessor.settings import DatabaseSettings

BASE_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    """Provide a controllable UTC clock."""
    return FrozenClock()


@pytest.fixture
def database_settings() -> DatabaseSettings:
    """Provide in-memory SQLite settings for testing."""
    return DatabaseSettings(url="sqlite://", sqlite_wal=False)


@pytest.fixture
def db_engine(database_settings: DatabaseSettings) -> Generator[Engine, None, None]:
    """Provide an in-memory SQLite engine with the schema applied.

    Yields:
        Engine: SQLAlchemy engine bound to a fresh database
    """
    engine = create_engine_from_settings(database_settings)
    apply_migrations(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    """Provide a session factory bound to the test engine."""
    return create_session_maker(db_engine)


@pytest.fixture
def store(session_factory: sessionmaker[Session]) -> DocumentStore:
    """Provide a document store over the test database."""
    return DocumentStore(session_factory)


@pytest.fixture
def seed(store: DocumentStore) -> Any:
    """Insert ``(id, document)`` pairs into a collection in a single batch."""

    def _seed(collection: str, documents: Iterable[tuple[str, dict[str, Any]]]) -> None:
        batch = WriteBatch()
        for document_id, document in documents:
            batch.set(collection, document_id, document)
        store.commit(batch)

    return _seed


@pytest.fixture
def make_visit() -> Any:
    """Factory for visit documents."""

    def _make(ip: str, session_id: str = "sess-1", offset_seconds: int = 0, **extra: Any) -> dict[str, Any]:
        visit = {
            "ip": ip,
            "session_id": session_id,
            "client_id": "client-1",
            "site_id": "site-1",
            "event_type": "pageview",
            "created_at": BASE_TIME + timedelta(seconds=offset_seconds),
        }
        visit.update(extra)
        return visit

    return _make
