"""Batch processor for pending company enrichment tasks.

One cycle pulls a bounded page of pending ``company_enrichment`` tasks, enriches
each one through the firmographic provider, and commits every resulting write
(company records, visit and session links, task status updates) as a single
atomic batch. A failing task is marked ``failed`` inside that same batch; it
never aborts the cycle. Failed tasks are terminal and are not retried.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from prospectprocessor.db.store import DocumentStore, WriteBatch
from prospectprocessor.exceptions import FirmographicAPIError
from prospectprocessor.telemetry import start_span

from .cache import utc_now
from .firmographic_client import FirmographicClient, OrganizationRecord, normalize_domain

logger = logging.getLogger(__name__)

TASK_TYPE = "company_enrichment"
DEFAULT_TASK_BATCH_SIZE = 20

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

RESULT_SUCCESS = "success"
RESULT_NOT_FOUND = "not_found"


@dataclass
class ProcessorCycleResult:
    """Outcome counts of one processor cycle."""

    processed: int = 0
    succeeded: int = 0
    not_found: int = 0
    failed: int = 0
    committed_writes: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class EnrichmentTaskProcessor:
    """Turn pending enrichment tasks into company records in one atomic batch per cycle."""

    def __init__(
        self,
        store: DocumentStore,
        firmographic: FirmographicClient,
        batch_size: int = DEFAULT_TASK_BATCH_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.firmographic = firmographic
        self.batch_size = batch_size
        self.clock = clock

    def run_cycle(self) -> ProcessorCycleResult:
        """Process up to ``batch_size`` pending tasks.

        Raises:
            BatchCommitError: If the end-of-cycle commit fails. Nothing from the
                cycle is persisted and the tasks remain pending.
        """
        result = ProcessorCycleResult()

        with start_span("prospectprocessor.tasks.run_cycle", {"tasks.batch_size": self.batch_size}) as span:
            tasks = self.store.query(
                "tasks",
                {"type": TASK_TYPE, "status": STATUS_PENDING},
                limit=self.batch_size,
                order_by="created_at",
            )
            if not tasks:
                logger.info("No pending enrichment tasks")
                return result

            logger.info(f"Processing {len(tasks)} enrichment tasks")
            batch = WriteBatch()

            for task in tasks:
                result.processed += 1
                task_batch = WriteBatch()
                try:
                    record = self._enrich(task)
                    if record is not None:
                        self._stage_company(task, record, task_batch)
                except Exception as e:
                    result.failed += 1
                    logger.error(f"Error processing task {task['id']}: {e}")
                    batch.update(
                        "tasks",
                        task["id"],
                        {
                            "status": STATUS_FAILED,
                            "completed_at": self.clock(),
                            "error": str(e) or type(e).__name__,
                        },
                    )
                    continue

                if record is not None:
                    result.succeeded += 1
                else:
                    result.not_found += 1
                batch.extend(task_batch)
                batch.update(
                    "tasks",
                    task["id"],
                    {
                        "status": STATUS_COMPLETED,
                        "completed_at": self.clock(),
                        "result": RESULT_SUCCESS if record is not None else RESULT_NOT_FOUND,
                    },
                )

            result.committed_writes = self.store.commit(batch)
            span.set_attribute("tasks.processed", result.processed)
            span.set_attribute("tasks.failed", result.failed)

        logger.info(
            f"Enrichment cycle complete: {result.succeeded} succeeded, "
            f"{result.not_found} not found, {result.failed} failed"
        )
        return result

    def _enrich(self, task: dict[str, Any]) -> Optional[OrganizationRecord]:
        domain = task.get("domain")
        company_name = task.get("company_name")
        record: Optional[OrganizationRecord] = None

        if domain:
            record = self.firmographic.enrich_by_domain(domain)

        if record is None and company_name:
            matches = self.firmographic.search_by_name(company_name)
            if matches:
                record = matches[0]
                if record.primary_domain:
                    try:
                        refined = self.firmographic.enrich_by_domain(record.primary_domain)
                    except FirmographicAPIError as e:
                        # Coarse search match stands when the refinement fails.
                        logger.warning(f"Refinement of {record.primary_domain} failed: {e}")
                    else:
                        if refined is not None:
                            record = refined

        return record

    def _stage_company(self, task: dict[str, Any], record: OrganizationRecord, batch: WriteBatch) -> None:
        company_id = record.primary_domain or (normalize_domain(task["domain"]) if task.get("domain") else None)
        if not company_id:
            logger.warning(f"Task {task['id']} matched {record.name!r} but no domain is known; skipping company write")
            return

        batch.set(
            "companies",
            company_id,
            {
                "name": record.name,
                "organization_id": record.organization_id,
                "data": record.data,
                "last_updated": self.clock(),
            },
        )

        link = {"company_id": company_id, "enriched_company_data": True}
        for visit_id in task.get("visit_ids") or []:
            if self.store.get("visits", visit_id) is None:
                logger.warning(f"Task {task['id']} references missing visit {visit_id}")
                continue
            batch.update("visits", visit_id, link)

        session_id = task.get("session_id")
        if session_id:
            if self.store.get("sessions", session_id) is None:
                logger.warning(f"Task {task['id']} references missing session {session_id}")
            else:
                batch.update("sessions", session_id, link)


__all__ = [
    "DEFAULT_TASK_BATCH_SIZE",
    "EnrichmentTaskProcessor",
    "ProcessorCycleResult",
    "RESULT_NOT_FOUND",
    "RESULT_SUCCESS",
    "STATUS_COMPLETED",
    "STATUS_FAILED",
    "STATUS_PENDING",
    "TASK_TYPE",
]
