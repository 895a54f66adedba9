"""Schema migration helpers for the prospect processor database."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, cast

from sqlalchemy import Table, inspect, select, text, update
from sqlalchemy.engine import Connection, Engine

from .base import Base
from .models import SchemaState

SCHEMA_VERSION_KEY = "schema_version"
CURRENT_SCHEMA_VERSION = 2

logger = logging.getLogger(__name__)


@contextmanager
def begin_connection(engine: Engine) -> Iterator[Connection]:
    """Context manager that yields a transactional connection."""
    with engine.begin() as connection:
        yield connection


def _column_exists(connection: Connection, table_name: str, column_name: str) -> bool:
    inspector = inspect(connection)
    if not inspector.has_table(table_name):
        return False
    return column_name in {col["name"] for col in inspector.get_columns(table_name)}


def _get_schema_version(connection: Connection) -> int:
    result = connection.execute(
        select(SchemaState.value).where(SchemaState.key == SCHEMA_VERSION_KEY)
    ).scalar_one_or_none()
    if result is None:
        return 0
    try:
        return int(result)
    except (TypeError, ValueError):
        return 0


def _set_schema_version(connection: Connection, version: int) -> None:
    stmt = update(SchemaState).where(SchemaState.key == SCHEMA_VERSION_KEY).values(value=str(version))
    result = connection.execute(stmt)
    if result.rowcount == 0:
        schema_table = cast(Table, SchemaState.__table__)
        connection.execute(schema_table.insert().values(key=SCHEMA_VERSION_KEY, value=str(version)))


def _upgrade_to_v2(connection: Connection) -> None:
    """Add the dedup attempt stamp on visits and the event history on sessions."""
    timestamp_type = "TIMESTAMP WITH TIME ZONE" if connection.dialect.name == "postgresql" else "DATETIME"

    if not _column_exists(connection, "visits", "dedup_attempted_at"):
        connection.execute(text(f"ALTER TABLE visits ADD COLUMN dedup_attempted_at {timestamp_type}"))
        connection.execute(
            text("CREATE INDEX IF NOT EXISTS ix_visits_dedup ON visits (company_id, dedup_attempted_at)")
        )
    if not _column_exists(connection, "sessions", "events"):
        connection.execute(text("ALTER TABLE sessions ADD COLUMN events JSON"))


def apply_migrations(engine: Engine) -> int:
    """Create or upgrade database schema and return the resulting version."""
    with begin_connection(engine) as connection:
        Base.metadata.create_all(bind=connection)
        version = _get_schema_version(connection)

        if version < 1:
            _set_schema_version(connection, 1)
            version = 1
            logger.info("Initialized schema at version 1")

        if version < 2:
            _upgrade_to_v2(connection)
            _set_schema_version(connection, 2)
            version = 2
            logger.info("Upgraded schema to version 2")

    return version


__all__ = ["CURRENT_SCHEMA_VERSION", "SCHEMA_VERSION_KEY", "apply_migrations", "begin_connection"]
