"""Shared configuration loading for CLI tools."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from ..settings import DatabaseSettings, EnrichmentSettings, load_database_settings, load_enrichment_settings

logger = logging.getLogger(__name__)

CONFIG_CANDIDATES = (Path("config/prospects.toml"), Path("prospects.toml"))


def _load_config_file(path: Path | None = None) -> dict[str, Any]:
    """Load prospects.toml, trying config/ first and then the working directory.

    Returns:
        Parsed TOML document, or an empty dict when no readable file exists
    """
    candidates = (path,) if path is not None else CONFIG_CANDIDATES
    for candidate in candidates:
        if not candidate.exists():
            continue
        try:
            with candidate.open("rb") as handle:
                return tomllib.load(handle)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(f"Ignoring unreadable config file {candidate}: {e}")
            return {}
    return {}


def resolve_database_settings(db_arg: str | None = None, config_path: Path | None = None) -> DatabaseSettings:
    """Resolve database settings from argument or configuration.

    Priority order:
    1. Explicit --db-url argument
    2. ``[global] db`` in prospects.toml
    3. Environment variables (PROSPECTPROC_DB_URL, PROSPECTPROC_DB_PATH)
    4. Default SQLite database

    Args:
        db_arg: Database URL or SQLite file path from the CLI
        config_path: Explicit config file instead of the default locations

    Returns:
        Database settings object configured for the target database
    """
    if not db_arg:
        db_url = _load_config_file(config_path).get("global", {}).get("db")
        if db_url:
            return load_database_settings(config={"url": db_url})
        return load_database_settings()

    if db_arg.startswith("sqlite:"):
        return load_database_settings(config={"url": db_arg})

    db_path = Path(db_arg)
    if db_path.exists() or db_arg.endswith(".sqlite"):
        return DatabaseSettings(url=f"sqlite:///{db_path.resolve()}")

    return load_database_settings(config={"url": db_arg})


def resolve_enrichment_settings(config_path: Path | None = None) -> EnrichmentSettings:
    """Load enrichment settings from the ``[enrichment]`` table, then the environment."""
    section = _load_config_file(config_path).get("enrichment", {})
    return load_enrichment_settings(config=section if isinstance(section, dict) else None)


def add_database_argument(parser: Any, help_text: str | None = None) -> None:
    """Add the standard --db-url and --config arguments to a parser."""
    default_help = (
        "Database connection URL (SQLite or PostgreSQL). If not provided, will read from prospects.toml or use default."
    )
    parser.add_argument("--db-url", default=None, help=help_text or default_help)
    parser.add_argument("--config", type=Path, default=None, help="Path to prospects.toml")
