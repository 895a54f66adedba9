"""ORM models for visitor tracking, company identification, and enrichment state."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    false,
    func,
)

from .base import Base


class SchemaState(Base):
    """Key/value metadata used to track schema versions and flags."""

    __tablename__ = "schema_state"

    key = Column(String(128), primary_key=True)
    value = Column(String(256), nullable=False)


class Visit(Base):
    """A single tracked page view, engagement, or conversion event."""

    __tablename__ = "visits"

    id = Column(String(64), primary_key=True)
    ip = Column(String(45), nullable=False)
    session_id = Column(String(64), nullable=True)
    client_id = Column(String(64), nullable=True)
    site_id = Column(String(64), nullable=True)
    event_type = Column(String(16), nullable=False, server_default="pageview")
    url = Column(Text, nullable=True)
    path = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    engagement_data = Column(JSON, nullable=True)
    conversion_data = Column(JSON, nullable=True)

    # Company identification written by the resolver and the enrichment processor
    company_id = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    company_domain = Column(String(255), nullable=True)
    identification_source = Column(String(32), nullable=True)
    identification_confidence = Column(Float, nullable=True)
    enriched_company_data = Column(Boolean, nullable=False, default=False, server_default=false())
    # Set once the dedup cycle has resolved this visit, whatever the outcome
    dedup_attempted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_visits_company_id", "company_id"),
        Index("ix_visits_ip", "ip"),
        Index("ix_visits_session_id", "session_id"),
        Index("ix_visits_dedup", "company_id", "dedup_attempted_at"),
    )


class VisitorSession(Base):
    """Browser session aggregating the visits of one client on one site."""

    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    client_id = Column(String(64), nullable=True)
    site_id = Column(String(64), nullable=True)
    ip = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)
    pageviews = Column(Integer, nullable=False, default=0, server_default="0")
    start_time = Column(DateTime(timezone=True), nullable=True)
    last_activity = Column(DateTime(timezone=True), nullable=True)
    events = Column(JSON, nullable=True)

    company_id = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    company_domain = Column(String(255), nullable=True)
    identification_source = Column(String(32), nullable=True)
    identification_confidence = Column(Float, nullable=True)
    enriched_company_data = Column(Boolean, nullable=False, default=False, server_default=false())

    __table_args__ = (
        Index("ix_sessions_ip_company", "ip", "company_id"),
    )


class EnrichmentTask(Base):
    """Pending or terminal unit of firmographic enrichment work."""

    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True)
    type = Column(String(32), nullable=False, default="company_enrichment", server_default="company_enrichment")
    domain = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    visit_ids = Column(JSON, nullable=True)
    session_id = Column(String(64), nullable=True)
    status = Column(String(16), nullable=False, default="pending", server_default="pending")  # pending, completed, failed
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    result = Column(String(16), nullable=True)  # success, not_found

    __table_args__ = (
        Index("ix_tasks_type_status", "type", "status"),
        Index("ix_tasks_created", "created_at"),
    )


class Company(Base):
    """Firmographic record keyed by normalized domain."""

    __tablename__ = "companies"

    domain = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=True)
    organization_id = Column(String(64), nullable=True)
    data = Column(JSON, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False)


class IPRange(Base):
    """Known corporate IPv4 range stored as inclusive unsigned 32-bit integers."""

    __tablename__ = "ip_ranges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    start_ip = Column(BigInteger, nullable=False)
    end_ip = Column(BigInteger, nullable=False)
    company_name = Column(String(255), nullable=False)
    company_domain = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_ip_ranges_start_end", "start_ip", "end_ip"),)


class CacheEntry(Base):
    """Namespaced TTL cache entry for lookup responses."""

    __tablename__ = "cache_entries"

    namespace = Column(String(32), primary_key=True)
    cache_key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=False)
    cached_at = Column(DateTime(timezone=True), nullable=False)


__all__ = [
    "SchemaState",
    "Visit",
    "VisitorSession",
    "EnrichmentTask",
    "Company",
    "IPRange",
    "CacheEntry",
]
