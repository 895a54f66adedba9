"""Database utilities for the prospect processor."""

from .base import Base
from .engine import create_engine_from_settings, create_session_maker, is_postgresql
from .migrations import CURRENT_SCHEMA_VERSION, apply_migrations
from .models import CacheEntry, Company, EnrichmentTask, IPRange, SchemaState, Visit, VisitorSession
from .store import DocumentStore, WriteBatch

__all__ = [
    "Base",
    "create_engine_from_settings",
    "create_session_maker",
    "is_postgresql",
    "apply_migrations",
    "CURRENT_SCHEMA_VERSION",
    "CacheEntry",
    "Company",
    "EnrichmentTask",
    "IPRange",
    "SchemaState",
    "Visit",
    "VisitorSession",
    "DocumentStore",
    "WriteBatch",
]
