"""Resolve still-unidentified visits once per unique IP address."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from prospectprocessor.db.store import DocumentStore, WriteBatch
from prospectprocessor.telemetry import start_span

from .cache import utc_now
from .firmographic_client import normalize_domain
from .identity_resolver import IdentitySourceResolver, ResolvedIdentity
from .task_processor import STATUS_PENDING, TASK_TYPE

logger = logging.getLogger(__name__)

DEFAULT_VISIT_PAGE_SIZE = 100
DEFAULT_SESSION_PAGE_SIZE = 50


@dataclass
class DedupCycleResult:
    """Outcome counts of one dedup cycle."""

    processed: int = 0
    unique_ips: int = 0
    identified: int = 0
    tasks_created: int = 0
    tasks_extended: int = 0
    visits_updated: int = 0
    sessions_updated: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def identity_fields(identity: ResolvedIdentity) -> dict[str, Any]:
    """Company fields written to visits and sessions for a resolved identity."""
    fields: dict[str, Any] = {
        "company_name": identity.company_name,
        "identification_source": identity.source.value if identity.source else None,
        "identification_confidence": identity.confidence,
    }
    if identity.company_domain:
        fields["company_domain"] = identity.company_domain
    return fields


@dataclass
class PendingTask:
    """An enrichment task for one domain, either new or already waiting in the store."""

    domain: str
    company_name: Optional[str]
    session_id: Optional[str]
    task_id: str
    existing: bool = False
    visit_ids: list[str] = field(default_factory=list)

    def add_visits(self, visit_ids: Iterable[str]) -> None:
        for visit_id in visit_ids:
            if visit_id not in self.visit_ids:
                self.visit_ids.append(visit_id)


class TaskQueue:
    """Collects visits per normalized domain so each domain has at most one pending task.

    A domain that already has a pending task in the store gets its visit ids
    appended to that task instead of a second task.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._pending: dict[str, PendingTask] = {}

    def add(
        self,
        domain: str,
        company_name: Optional[str],
        visit_ids: Iterable[str],
        session_id: Optional[str],
    ) -> PendingTask:
        key = normalize_domain(domain)
        task = self._pending.get(key)
        if task is None:
            waiting = self.store.query(
                "tasks",
                {"type": TASK_TYPE, "domain": key, "status": STATUS_PENDING},
                limit=1,
                order_by="created_at",
            )
            if waiting:
                task = PendingTask(
                    domain=key,
                    company_name=waiting[0].get("company_name"),
                    session_id=waiting[0].get("session_id"),
                    task_id=waiting[0]["id"],
                    existing=True,
                    visit_ids=list(waiting[0].get("visit_ids") or []),
                )
            else:
                task = PendingTask(
                    domain=key,
                    company_name=company_name,
                    session_id=session_id,
                    task_id=self.store.new_id(),
                )
            self._pending[key] = task
        task.add_visits(visit_ids)
        return task

    def stage(self, batch: WriteBatch, now: datetime) -> tuple[int, int]:
        """Stage every collected task and return ``(created, extended)``."""
        created = extended = 0
        for task in self._pending.values():
            if task.existing:
                batch.update("tasks", task.task_id, {"visit_ids": list(task.visit_ids)})
                extended += 1
                continue
            batch.set(
                "tasks",
                task.task_id,
                {
                    "type": TASK_TYPE,
                    "domain": task.domain,
                    "company_name": task.company_name,
                    "visit_ids": list(task.visit_ids),
                    "session_id": task.session_id,
                    "status": STATUS_PENDING,
                    "created_at": now,
                },
            )
            created += 1
        return created, extended


class IPDedupCollaborator:
    """Group unidentified visits by IP and resolve each IP exactly once per cycle.

    Only visits without a company that no earlier cycle has resolved are
    selected, and every selected visit is stamped with ``dedup_attempted_at``,
    so the page moves forward even when addresses resolve to nothing.

    For every IP that resolves to a company, all grouped visits and up to
    ``session_page_size`` unidentified sessions on that IP receive the identity
    fields. Visits whose identity carries a domain are queued for enrichment,
    one pending task per domain.
    """

    def __init__(
        self,
        store: DocumentStore,
        resolver: IdentitySourceResolver,
        visit_page_size: int = DEFAULT_VISIT_PAGE_SIZE,
        session_page_size: int = DEFAULT_SESSION_PAGE_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.visit_page_size = visit_page_size
        self.session_page_size = session_page_size
        self.clock = clock

    def run_cycle(self) -> DedupCycleResult:
        """Process one page of visits that have no company.

        Raises:
            BatchCommitError: If the end-of-cycle commit fails.
        """
        result = DedupCycleResult()

        with start_span("prospectprocessor.dedup.run_cycle", {"visits.page_size": self.visit_page_size}) as span:
            visits = self.store.query(
                "visits",
                {"company_id": None, "dedup_attempted_at": None},
                limit=self.visit_page_size,
                order_by="created_at",
            )
            if not visits:
                logger.info("No unresolved IPs to process")
                return result

            now = self.clock()
            result.processed = len(visits)
            groups: dict[str, list[dict[str, Any]]] = {}
            for visit in visits:
                groups.setdefault(visit.get("ip") or "", []).append(visit)
            result.unique_ips = len([ip for ip in groups if ip])
            logger.info(f"Processing {len(visits)} unresolved visits across {result.unique_ips} IPs")

            batch = WriteBatch()
            queue = TaskQueue(self.store)
            for ip_address, grouped in groups.items():
                identity = self.resolver.resolve(ip_address) if ip_address else ResolvedIdentity()
                if not identity.identified:
                    logger.debug(f"No company found for IP {ip_address}")
                    for visit in grouped:
                        batch.update("visits", visit["id"], {"dedup_attempted_at": now})
                    continue

                result.identified += 1
                source = identity.source.value if identity.source else None
                logger.info(f"Found company for IP {ip_address}: {identity.company_name} ({source})")

                fields = identity_fields(identity)
                for visit in grouped:
                    batch.update("visits", visit["id"], {**fields, "dedup_attempted_at": now})
                    result.visits_updated += 1

                sessions = self.store.query(
                    "sessions", {"ip": ip_address, "company_id": None}, limit=self.session_page_size
                )
                for session in sessions:
                    batch.update("sessions", session["id"], fields)
                    result.sessions_updated += 1

                if identity.company_domain:
                    queue.add(
                        identity.company_domain,
                        identity.company_name,
                        [visit["id"] for visit in grouped],
                        grouped[0].get("session_id"),
                    )

            result.tasks_created, result.tasks_extended = queue.stage(batch, now)
            self.store.commit(batch)
            span.set_attribute("dedup.unique_ips", result.unique_ips)
            span.set_attribute("dedup.tasks_created", result.tasks_created)

        logger.info(
            f"Dedup cycle complete: {result.identified}/{result.unique_ips} IPs identified, "
            f"{result.tasks_created} tasks created, {result.tasks_extended} extended"
        )
        return result


__all__ = [
    "DEFAULT_SESSION_PAGE_SIZE",
    "DEFAULT_VISIT_PAGE_SIZE",
    "DedupCycleResult",
    "IPDedupCollaborator",
    "PendingTask",
    "TaskQueue",
    "identity_fields",
]
