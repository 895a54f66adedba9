"""Visit ingestion: record a tracked event and identify the visitor's company."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Mapping

from .db.store import DocumentStore, WriteBatch
from .enrichment.cache import utc_now
from .enrichment.identity_resolver import IdentitySourceResolver
from .enrichment.ip_dedup import TaskQueue, identity_fields
from .exceptions import InvalidVisitError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("ip", "session_id", "client_id", "site_id", "event_type")
EVENT_TYPES = frozenset({"pageview", "engagement", "conversion"})

_OPTIONAL_VISIT_FIELDS = (
    "url",
    "path",
    "referrer",
    "user_agent",
    "utm_source",
    "utm_medium",
    "utm_campaign",
)


class VisitTracker:
    """Store tracked events and link them to a company when the IP resolves.

    Each call writes the visit, creates or updates its session (appending the
    event to its history), and queues the visit for enrichment when the resolver
    found a domain, all in one atomic batch. A domain with a task still pending
    gets the visit added to that task.
    """

    def __init__(
        self,
        store: DocumentStore,
        resolver: IdentitySourceResolver,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.clock = clock

    def track_visit(self, payload: Mapping[str, Any]) -> str:
        """Record one tracked event and return the new visit id.

        Raises:
            InvalidVisitError: If a required field is missing or ``event_type``
                is not one of pageview, engagement, conversion.
            BatchCommitError: If the visit could not be persisted.
        """
        missing = [name for name in REQUIRED_FIELDS if not payload.get(name)]
        if missing:
            raise InvalidVisitError(f"Missing required fields: {', '.join(missing)}")

        event_type = payload["event_type"]
        if event_type not in EVENT_TYPES:
            raise InvalidVisitError(f"Unsupported event type {event_type!r}")

        ip_address = payload["ip"]
        session_id = payload["session_id"]
        now = self.clock()

        identity = self.resolver.resolve(ip_address)
        company = identity_fields(identity) if identity.identified else {}

        visit_id = self.store.new_id()
        visit: dict[str, Any] = {
            "ip": ip_address,
            "session_id": session_id,
            "client_id": payload["client_id"],
            "site_id": payload["site_id"],
            "event_type": event_type,
            "created_at": now,
            **{name: payload.get(name) for name in _OPTIONAL_VISIT_FIELDS},
            **company,
        }
        if identity.identified:
            # Already resolved here; unidentified visits are left for the dedup cycle.
            visit["dedup_attempted_at"] = now
        if event_type == "engagement" and payload.get("engagement_data"):
            visit["engagement_data"] = dict(payload["engagement_data"])
        if event_type == "conversion" and payload.get("conversion_data"):
            visit["conversion_data"] = dict(payload["conversion_data"])

        batch = WriteBatch()
        batch.set("visits", visit_id, visit)

        event = {"type": event_type, "timestamp": now.isoformat(), "path": payload.get("path")}
        existing_session = self.store.get("sessions", session_id)
        if existing_session is None:
            batch.set(
                "sessions",
                session_id,
                {
                    "client_id": payload["client_id"],
                    "site_id": payload["site_id"],
                    "ip": ip_address,
                    "user_agent": payload.get("user_agent"),
                    "referrer": payload.get("referrer"),
                    "pageviews": 1,
                    "start_time": now,
                    "last_activity": now,
                    "events": [event],
                    **company,
                },
            )
        else:
            batch.update(
                "sessions",
                session_id,
                {
                    "last_activity": now,
                    "pageviews": (existing_session.get("pageviews") or 0) + 1,
                    "events": [*(existing_session.get("events") or []), event],
                },
            )

        if identity.identified and identity.company_domain:
            queue = TaskQueue(self.store)
            queue.add(identity.company_domain, identity.company_name, [visit_id], session_id)
            queue.stage(batch, now)

        self.store.commit(batch)
        logger.debug(f"Tracked {event_type} visit {visit_id} from {ip_address}")
        return visit_id


__all__ = ["EVENT_TYPES", "REQUIRED_FIELDS", "VisitTracker"]
