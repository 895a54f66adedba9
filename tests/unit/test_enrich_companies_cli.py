"""Tests for the prospect-enrich command line interface."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from prospectprocessor.cli.enrich_companies import main
from prospectprocessor.db import CURRENT_SCHEMA_VERSION, create_engine_from_settings, create_session_maker
from prospectprocessor.enrichment.identity_resolver import IdentitySource, ResolvedIdentity
from prospectprocessor.enrichment.ip_ranges import IPRangeDirectory
from prospectprocessor.enrichment.task_processor import ProcessorCycleResult
from prospectprocessor.exceptions import BatchCommitError
from prospectprocessor.settings import DatabaseSettings


def _pipeline_mock() -> MagicMock:
    pipeline = MagicMock()
    pipeline.__enter__.return_value = pipeline
    return pipeline


class TestEnrichCompaniesCLI:
    """Test subcommand dispatch and exit codes."""

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Running without a subcommand shows usage and fails."""
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_init_db(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """init-db creates the schema and reports its version."""
        db_path = tmp_path / "prospects.sqlite"

        assert main(["init-db", "--db-url", str(db_path)]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output == {"schema_version": CURRENT_SCHEMA_VERSION}
        assert db_path.exists()

    def test_resolve_identified(self, capsys: pytest.CaptureFixture[str]) -> None:
        """resolve prints the identity and exits 0 when a company was found."""
        pipeline = _pipeline_mock()
        pipeline.resolver.resolve.return_value = ResolvedIdentity(
            company_name="Acme", company_domain="acme.com", source=IdentitySource.REVERSE_DNS, confidence=0.8
        )

        with patch("prospectprocessor.cli.enrich_companies.build_pipeline", return_value=pipeline):
            assert main(["resolve", "203.0.113.7", "--db-url", "sqlite://"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["company_name"] == "Acme"
        assert output["source"] == "reverse_dns"
        pipeline.resolver.resolve.assert_called_once_with("203.0.113.7")
        pipeline.__exit__.assert_called_once()

    def test_resolve_unidentified(self, capsys: pytest.CaptureFixture[str]) -> None:
        """An unknown address exits 2."""
        pipeline = _pipeline_mock()
        pipeline.resolver.resolve.return_value = ResolvedIdentity()

        with patch("prospectprocessor.cli.enrich_companies.build_pipeline", return_value=pipeline):
            assert main(["resolve", "203.0.113.8", "--db-url", "sqlite://"]) == 2

    def test_process_tasks_batch_size(self, capsys: pytest.CaptureFixture[str]) -> None:
        """--batch-size overrides the processor page size."""
        pipeline = _pipeline_mock()
        pipeline.processor.run_cycle.return_value = ProcessorCycleResult(processed=3, succeeded=2, failed=1)

        with patch("prospectprocessor.cli.enrich_companies.build_pipeline", return_value=pipeline):
            assert main(["process-tasks", "--batch-size", "5", "--db-url", "sqlite://"]) == 0

        assert pipeline.processor.batch_size == 5
        output = json.loads(capsys.readouterr().out)
        assert output["processed"] == 3
        assert output["failed"] == 1

    def test_commit_failure_exits_1(self) -> None:
        """Pipeline errors are logged and turned into exit code 1."""
        pipeline = _pipeline_mock()
        pipeline.dedup.run_cycle.side_effect = BatchCommitError("disk full", staged_writes=4)

        with patch("prospectprocessor.cli.enrich_companies.build_pipeline", return_value=pipeline):
            assert main(["process-unresolved", "--db-url", "sqlite://"]) == 1

    def test_load_ranges(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """load-ranges stores valid rows and skips broken ones."""
        db_path = tmp_path / "prospects.sqlite"
        csv_path = tmp_path / "ranges.csv"
        csv_path.write_text(
            "start,end,cidr,company_name,company_domain\n"
            "192.0.2.0,192.0.2.255,,Acme,Acme.com\n"
            ",,198.51.100.0/24,Globex,globex.example\n"
            "10.0.0.9,10.0.0.1,,Broken,broken.example\n",
            encoding="utf-8",
        )

        assert main(["load-ranges", str(csv_path), "--db-url", str(db_path)]) == 0
        assert json.loads(capsys.readouterr().out)["ranges_added"] == 2

        engine = create_engine_from_settings(DatabaseSettings(url=f"sqlite:///{db_path}"))
        try:
            directory = IPRangeDirectory(create_session_maker(engine))
            match = directory.find("192.0.2.77")
            assert match is not None
            assert match.company_domain == "acme.com"
            assert directory.find("198.51.100.1").company_name == "Globex"
            assert directory.find("10.0.0.5") is None
        finally:
            engine.dispose()

    def test_load_ranges_missing_file(self, tmp_path: Path) -> None:
        """A missing CSV exits 1 without touching the database."""
        with patch("prospectprocessor.cli.enrich_companies.build_pipeline") as build:
            assert main(["load-ranges", str(tmp_path / "nope.csv"), "--db-url", "sqlite://"]) == 1
        build.assert_not_called()
