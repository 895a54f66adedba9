"""CLI for company identification and firmographic enrichment cycles."""

from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterable

from tqdm import tqdm

from prospectprocessor.db import apply_migrations, create_engine_from_settings
from prospectprocessor.exceptions import ProspectProcessorError
from prospectprocessor.pipeline import Pipeline, build_pipeline

from .db_config import add_database_argument, resolve_database_settings, resolve_enrichment_settings

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s [%(levelname)s] %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _open_pipeline(args: argparse.Namespace) -> Pipeline:
    return build_pipeline(
        db_settings=resolve_database_settings(args.db_url, args.config),
        settings=resolve_enrichment_settings(args.config),
    )


def init_db(args: argparse.Namespace) -> int:
    """Create or upgrade the database schema."""
    engine = create_engine_from_settings(resolve_database_settings(args.db_url, args.config))
    try:
        version = apply_migrations(engine)
    finally:
        engine.dispose()
    _emit({"schema_version": version})
    return 0


def resolve_ip(args: argparse.Namespace) -> int:
    """Resolve one IP address and print the identity."""
    with _open_pipeline(args) as pipeline:
        identity = pipeline.resolver.resolve(args.ip)
    _emit(identity.as_dict())
    return 0 if identity.identified else 2


def process_tasks(args: argparse.Namespace) -> int:
    """Run one enrichment cycle over pending tasks."""
    with _open_pipeline(args) as pipeline:
        if args.batch_size:
            pipeline.processor.batch_size = args.batch_size
        result = pipeline.processor.run_cycle()
    _emit(result.as_dict())
    return 0


def process_unresolved(args: argparse.Namespace) -> int:
    """Run one dedup cycle over visits without a company."""
    with _open_pipeline(args) as pipeline:
        if args.limit:
            pipeline.dedup.visit_page_size = args.limit
        result = pipeline.dedup.run_cycle()
    _emit(result.as_dict())
    return 0


def load_ranges(args: argparse.Namespace) -> int:
    """Import corporate IP ranges from a CSV file."""
    path: Path = args.file
    if not path.exists():
        logger.error(f"Range file not found: {path}")
        return 1

    with _open_pipeline(args) as pipeline, path.open(newline="", encoding="utf-8") as handle:
        rows: Iterable[dict[str, str]] = csv.DictReader(handle)
        added = pipeline.ip_ranges.load_rows(tqdm(rows, desc="Loading IP ranges", disable=not args.progress))
    _emit({"file": str(path), "ranges_added": added})
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    """Entry point for the prospect-enrich command."""
    parser = argparse.ArgumentParser(
        description="Identify visitor companies and enrich them with firmographic data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the schema
  prospect-enrich init-db --db-url sqlite:////var/lib/prospects.sqlite

  # Identify the company behind an address
  prospect-enrich resolve 203.0.113.7

  # Cron-driven cycles
  */5 * * * * prospect-enrich process-tasks
  0 * * * *   prospect-enrich process-unresolved

  # Seed known corporate ranges (columns: start,end,company_name,company_domain or cidr,...)
  prospect-enrich load-ranges ranges.csv --progress
        """,
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Subcommand to run")

    init_parser = subparsers.add_parser("init-db", help="Create or upgrade the database schema")
    add_database_argument(init_parser)
    init_parser.set_defaults(func=init_db)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve the company behind an IP address")
    resolve_parser.add_argument("ip", help="IPv4 or IPv6 address")
    add_database_argument(resolve_parser)
    resolve_parser.set_defaults(func=resolve_ip)

    tasks_parser = subparsers.add_parser("process-tasks", help="Process pending enrichment tasks")
    tasks_parser.add_argument("--batch-size", type=int, default=None, help="Tasks per cycle (default: 20)")
    add_database_argument(tasks_parser)
    tasks_parser.set_defaults(func=process_tasks)

    unresolved_parser = subparsers.add_parser("process-unresolved", help="Resolve visits without a company")
    unresolved_parser.add_argument("--limit", type=int, default=None, help="Visits per cycle (default: 100)")
    add_database_argument(unresolved_parser)
    unresolved_parser.set_defaults(func=process_unresolved)

    ranges_parser = subparsers.add_parser("load-ranges", help="Import corporate IP ranges from CSV")
    ranges_parser.add_argument("file", type=Path, help="CSV file with a header row")
    ranges_parser.add_argument("--progress", action="store_true", help="Show progress bar")
    add_database_argument(ranges_parser)
    ranges_parser.set_defaults(func=load_ranges)

    args = parser.parse_args(list(argv) if argv is not None else None)

    if not args.command:
        parser.print_help()
        return 1

    _configure_logging(args.verbose)

    try:
        result: int = args.func(args)
    except ProspectProcessorError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    return result


if __name__ == "__main__":
    sys.exit(main())
