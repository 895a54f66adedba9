"""Unit tests for the enrichment task processor."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import Mock

import pytest

from prospectprocessor.db.store import WriteOperation
from prospectprocessor.enrichment.firmographic_client import OrganizationRecord
from prospectprocessor.enrichment.task_processor import EnrichmentTaskProcessor
from prospectprocessor.exceptions import BatchCommitError, FirmographicAPIError

BASE_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _org(domain: str, name: str | None = None, **extra: Any) -> OrganizationRecord:
    data = {"id": f"org-{domain}", "name": name or domain.split(".")[0].title(), "primary_domain": domain}
    data.update(extra)
    return OrganizationRecord(data=data)


def _task(index: int, **overrides: Any) -> tuple[str, dict[str, Any]]:
    task = {
        "type": "company_enrichment",
        "domain": f"company{index}.com",
        "company_name": f"Company {index}",
        "visit_ids": [],
        "status": "pending",
        "created_at": BASE_TIME + timedelta(seconds=index),
    }
    task.update(overrides)
    return f"task-{index:02d}", task


@pytest.fixture
def firmographic() -> Mock:
    """Firmographic client that knows every companyN.com domain."""
    client = Mock()
    client.enrich_by_domain.side_effect = lambda domain: _org(domain)
    client.search_by_name.return_value = []
    return client


@pytest.fixture
def processor(store, firmographic: Mock, clock) -> EnrichmentTaskProcessor:
    """Create EnrichmentTaskProcessor for testing."""
    return EnrichmentTaskProcessor(store, firmographic, clock=clock)


class TestRunCycle:
    """Test cycle-level behaviour."""

    def test_no_pending_tasks(self, processor: EnrichmentTaskProcessor, store) -> None:
        """An empty queue processes nothing and commits nothing."""
        store.commit = Mock(wraps=store.commit)

        result = processor.run_cycle()

        assert result.processed == 0
        store.commit.assert_not_called()

    def test_failing_task_is_isolated_in_single_batch(
        self, processor: EnrichmentTaskProcessor, store, seed, firmographic: Mock
    ) -> None:
        """Task #7 raising still commits all 20 status updates in one batch."""
        seed("tasks", [_task(i) for i in range(20)])

        def enrich(domain: str) -> OrganizationRecord:
            if domain == "company7.com":
                raise RuntimeError("provider returned garbage")
            return _org(domain)

        firmographic.enrich_by_domain.side_effect = enrich
        store.commit = Mock(wraps=store.commit)

        result = processor.run_cycle()

        assert (result.processed, result.succeeded, result.failed) == (20, 19, 1)
        store.commit.assert_called_once()
        batch = store.commit.call_args.args[0]
        task_updates = [w for w in batch.writes if w.collection == "tasks" and w.operation is WriteOperation.UPDATE]
        assert len(task_updates) == 20

        failed = store.get("tasks", "task-07")
        assert failed["status"] == "failed"
        assert failed["error"] == "provider returned garbage"
        assert failed["completed_at"] is not None

        completed = store.query("tasks", {"status": "completed"})
        assert len(completed) == 19
        assert {task["result"] for task in completed} == {"success"}
        assert store.get("companies", "company7.com") is None
        assert store.get("companies", "company8.com")["name"] == "Company8"

    def test_cycle_is_bounded(self, processor: EnrichmentTaskProcessor, store, seed) -> None:
        """At most 20 tasks are taken per cycle, oldest first."""
        seed("tasks", [_task(i) for i in range(25)])

        result = processor.run_cycle()

        assert result.processed == 20
        pending = store.query("tasks", {"status": "pending"})
        assert sorted(task["id"] for task in pending) == [f"task-{i}" for i in range(20, 25)]

    def test_non_pending_and_other_types_ignored(self, processor: EnrichmentTaskProcessor, seed) -> None:
        """Terminal tasks and other task types are never selected."""
        seed(
            "tasks",
            [
                _task(1, status="failed"),
                _task(2, status="completed", result="success"),
                _task(3, type="something_else"),
            ],
        )

        assert processor.run_cycle().processed == 0

    def test_commit_failure_raises_and_persists_nothing(
        self, processor: EnrichmentTaskProcessor, store, seed, firmographic: Mock
    ) -> None:
        """A failing commit surfaces BatchCommitError and leaves tasks pending."""
        seed("tasks", [_task(1), _task(2)])
        firmographic.enrich_by_domain.side_effect = lambda domain: _org(domain, blob=object())

        with pytest.raises(BatchCommitError):
            processor.run_cycle()

        assert len(store.query("tasks", {"status": "pending"})) == 2
        assert store.query("companies") == []


class TestTaskOutcomes:
    """Test per-task enrichment paths."""

    def test_success_links_visits_and_session(
        self, processor: EnrichmentTaskProcessor, store, seed, make_visit, clock
    ) -> None:
        """The company is written and every referenced visit and the session are linked."""
        seed("visits", [("v1", make_visit("192.0.2.1")), ("v2", make_visit("192.0.2.1"))])
        seed("sessions", [("sess-1", {"ip": "192.0.2.1", "pageviews": 2})])
        seed("tasks", [_task(1, domain="Acme.com", visit_ids=["v1", "v2"], session_id="sess-1")])

        result = processor.run_cycle()

        assert result.succeeded == 1
        company = store.get("companies", "acme.com")
        assert company["name"] == "Acme"
        assert company["organization_id"] == "org-Acme.com"
        assert company["data"]["primary_domain"] == "Acme.com"
        for visit_id in ("v1", "v2"):
            visit = store.get("visits", visit_id)
            assert visit["company_id"] == "acme.com"
            assert visit["enriched_company_data"] is True
        assert store.get("sessions", "sess-1")["company_id"] == "acme.com"
        assert store.get("tasks", "task-01")["result"] == "success"

    def test_company_record_fully_overwritten(
        self, processor: EnrichmentTaskProcessor, store, seed, firmographic: Mock
    ) -> None:
        """A second enrichment replaces the stored data instead of merging it."""
        seed("tasks", [_task(1, domain="acme.com")])
        firmographic.enrich_by_domain.side_effect = lambda domain: _org(domain, industry="retail")
        processor.run_cycle()

        seed("tasks", [_task(2, domain="acme.com")])
        firmographic.enrich_by_domain.side_effect = lambda domain: _org(domain, employees=10)
        processor.run_cycle()

        data = store.get("companies", "acme.com")["data"]
        assert "industry" not in data
        assert data["employees"] == 10

    def test_not_found(self, processor: EnrichmentTaskProcessor, store, seed, firmographic: Mock) -> None:
        """No domain match and no search match completes with not_found."""
        seed("tasks", [_task(1)])
        firmographic.enrich_by_domain.side_effect = None
        firmographic.enrich_by_domain.return_value = None

        result = processor.run_cycle()

        assert result.not_found == 1
        task = store.get("tasks", "task-01")
        assert (task["status"], task["result"]) == ("completed", "not_found")
        assert store.query("companies") == []

    def test_search_fallback_refines_by_domain(
        self, processor: EnrichmentTaskProcessor, store, seed, firmographic: Mock
    ) -> None:
        """A name search match is refined through its own domain."""
        seed("tasks", [_task(1, domain=None, company_name="Globex")])
        firmographic.search_by_name.return_value = [_org("globex.com", name="Globex (coarse)")]
        firmographic.enrich_by_domain.side_effect = lambda domain: _org(domain, name="Globex Corporation")

        processor.run_cycle()

        firmographic.search_by_name.assert_called_once_with("Globex")
        firmographic.enrich_by_domain.assert_called_once_with("globex.com")
        assert store.get("companies", "globex.com")["name"] == "Globex Corporation"

    def test_failed_refinement_keeps_coarse_match(
        self, processor: EnrichmentTaskProcessor, store, seed, firmographic: Mock
    ) -> None:
        """A provider error during refinement does not fail the task."""
        seed("tasks", [_task(1, domain=None, company_name="Globex")])
        firmographic.search_by_name.return_value = [_org("globex.com", name="Globex (coarse)")]
        firmographic.enrich_by_domain.side_effect = FirmographicAPIError("rate limited", status_code=429)

        result = processor.run_cycle()

        assert result.succeeded == 1
        assert store.get("companies", "globex.com")["name"] == "Globex (coarse)"

    def test_provider_error_fails_task(self, processor: EnrichmentTaskProcessor, store, seed, firmographic: Mock) -> None:
        """An HTTP failure on the primary lookup marks the task failed."""
        seed("tasks", [_task(1)])
        firmographic.enrich_by_domain.side_effect = FirmographicAPIError("Firmographic API error: 500", 500)

        result = processor.run_cycle()

        assert result.failed == 1
        assert store.get("tasks", "task-01")["error"] == "Firmographic API error: 500"

    def test_missing_visit_is_skipped(self, processor: EnrichmentTaskProcessor, store, seed, make_visit) -> None:
        """References to deleted visits do not break the batch."""
        seed("visits", [("v1", make_visit("192.0.2.1"))])
        seed("tasks", [_task(1, visit_ids=["v1", "gone"], session_id="no-such-session")])

        result = processor.run_cycle()

        assert result.succeeded == 1
        assert store.get("visits", "v1")["company_id"] == "company1.com"
