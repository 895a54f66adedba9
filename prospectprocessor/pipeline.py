"""Wiring of the identification and enrichment pipeline from settings.

Example:
    >>> pipeline = build_pipeline()
    >>> identity = resolve("203.0.113.7", pipeline)
    >>> run_dedup_cycle(pipeline).tasks_created
    1
    >>> run_enrichment_cycle(pipeline).succeeded
    1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.engine import Engine

from .db import apply_migrations, create_engine_from_settings, create_session_maker
from .db.store import DocumentStore
from .enrichment.cache import DatabaseCacheBackend, TTLCache
from .enrichment.firmographic_client import FirmographicClient
from .enrichment.identity_resolver import IdentitySourceResolver, ResolvedIdentity
from .enrichment.ip_dedup import DedupCycleResult, IPDedupCollaborator
from .enrichment.ip_ranges import IPRangeDirectory
from .enrichment.ipinfo_client import IPInfoClient
from .enrichment.rate_limiting import RateLimitedSession
from .enrichment.reverse_dns import ReverseDNSLookup
from .enrichment.task_processor import EnrichmentTaskProcessor, ProcessorCycleResult
from .settings import DatabaseSettings, EnrichmentSettings, load_database_settings, load_enrichment_settings
from .tracking import VisitTracker

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Fully wired pipeline components sharing one database engine."""

    engine: Engine
    store: DocumentStore
    ip_ranges: IPRangeDirectory
    ipinfo: IPInfoClient
    firmographic: FirmographicClient
    resolver: IdentitySourceResolver
    processor: EnrichmentTaskProcessor
    dedup: IPDedupCollaborator
    tracker: VisitTracker

    def close(self) -> None:
        for client in (self.ipinfo, self.firmographic):
            if isinstance(client.http, RateLimitedSession):
                client.http.close()
        self.engine.dispose()

    def __enter__(self) -> "Pipeline":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def build_pipeline(
    db_settings: Optional[DatabaseSettings] = None,
    settings: Optional[EnrichmentSettings] = None,
    engine: Optional[Engine] = None,
) -> Pipeline:
    """Create every pipeline component from settings.

    Missing settings are loaded from the environment. The schema is created or
    upgraded before anything else touches the database.
    """
    settings = settings or load_enrichment_settings()
    if engine is None:
        engine = create_engine_from_settings(db_settings or load_database_settings())
    apply_migrations(engine)

    session_factory = create_session_maker(engine)
    store = DocumentStore(session_factory)

    ipinfo = IPInfoClient(
        token=settings.ipinfo_token,
        cache=TTLCache(
            ttl=settings.ipinfo_cache_ttl,
            backend=DatabaseCacheBackend(session_factory, namespace="ipinfo"),
            name="ipinfo",
        ),
        http=RateLimitedSession(
            rate_limit=settings.ipinfo_rate_limit,
            burst=max(1, int(settings.ipinfo_rate_limit)),
            timeout=settings.http_timeout,
        ),
        base_url=settings.ipinfo_base_url,
        timeout=settings.http_timeout,
    )
    firmographic = FirmographicClient(
        api_key=settings.firmographic_api_key,
        cache=TTLCache(
            ttl=settings.firmographic_cache_ttl,
            backend=DatabaseCacheBackend(session_factory, namespace="firmographic"),
            name="firmographic",
        ),
        http=RateLimitedSession(
            rate_limit=settings.firmographic_rate_limit,
            burst=max(1, int(settings.firmographic_rate_limit)),
            timeout=settings.http_timeout,
        ),
        base_url=settings.firmographic_base_url,
        timeout=settings.http_timeout,
    )

    ip_ranges = IPRangeDirectory(session_factory)
    resolver = IdentitySourceResolver(
        ipinfo=ipinfo,
        reverse_dns=ReverseDNSLookup(timeout=settings.dns_timeout),
        ip_ranges=ip_ranges,
    )

    logger.debug("Pipeline components initialized")
    return Pipeline(
        engine=engine,
        store=store,
        ip_ranges=ip_ranges,
        ipinfo=ipinfo,
        firmographic=firmographic,
        resolver=resolver,
        processor=EnrichmentTaskProcessor(store, firmographic, batch_size=settings.task_batch_size),
        dedup=IPDedupCollaborator(
            store,
            resolver,
            visit_page_size=settings.visit_page_size,
            session_page_size=settings.session_page_size,
        ),
        tracker=VisitTracker(store, resolver),
    )


def resolve(ip_address: str, pipeline: Optional[Pipeline] = None) -> ResolvedIdentity:
    """Resolve the company behind ``ip_address``.

    Without a ``pipeline`` one is built from settings and closed afterwards.
    """
    if pipeline is None:
        with build_pipeline() as owned:
            return owned.resolver.resolve(ip_address)
    return pipeline.resolver.resolve(ip_address)


def run_enrichment_cycle(pipeline: Optional[Pipeline] = None) -> ProcessorCycleResult:
    """Process one page of pending enrichment tasks."""
    if pipeline is None:
        with build_pipeline() as owned:
            return owned.processor.run_cycle()
    return pipeline.processor.run_cycle()


def run_dedup_cycle(pipeline: Optional[Pipeline] = None) -> DedupCycleResult:
    """Resolve one page of visits that have no company yet."""
    if pipeline is None:
        with build_pipeline() as owned:
            return owned.dedup.run_cycle()
    return pipeline.dedup.run_cycle()


__all__ = ["Pipeline", "build_pipeline", "resolve", "run_dedup_cycle", "run_enrichment_cycle"]
