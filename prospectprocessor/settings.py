"""Runtime configuration helpers for the prospect processor."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

_DEFAULT_DB_PATH = Path("prospectprocessor.sqlite")

DEFAULT_ENV_PREFIX = "PROSPECTPROC_"

_TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "f", "no", "n", "off"}


def _coerce(raw: str, current: Any) -> Any:
    """Parse an environment string into the type of ``current``; unparseable values keep it."""
    value = raw.strip()
    if isinstance(current, bool):
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        return current
    try:
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
    except ValueError:
        return current
    return value


def _apply_sources(
    settings: Any,
    config: Mapping[str, Any] | None,
    env_names: Mapping[str, str],
) -> tuple[Any, set[str]]:
    """Overlay explicit config values, then environment values, onto ``settings``.

    Returns the settings and the names that came from ``config``.
    """
    explicit = {k: v for k, v in (config or {}).items() if v is not None}
    env = os.environ

    for settings_field in fields(settings):
        name = settings_field.name
        current = getattr(settings, name)
        if name in explicit:
            setattr(settings, name, type(current)(explicit[name]))
            continue
        raw = env.get(env_names[name])
        if raw is not None:
            setattr(settings, name, _coerce(raw, current))

    return settings, set(explicit) & {f.name for f in fields(settings)}


@dataclass(slots=True)
class DatabaseSettings:
    """Where visits, tasks, companies and caches are stored."""

    url: str
    echo: bool = False
    pool_timeout: int = 30
    sqlite_wal: bool = True

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env_prefix: str = DEFAULT_ENV_PREFIX,
    ) -> "DatabaseSettings":
        """Build settings from defaults, optional config mapping, and environment variables.

        Precedence order (highest to lowest):
        1. Explicit config mapping values
        2. Environment variables (``<prefix>DB_URL``, ``<prefix>DB_ECHO``, ...)
        3. Default values

        ``<prefix>DB_PATH`` names a SQLite file and applies only when neither
        ``url`` nor ``<prefix>DB_URL`` is given.
        """
        prefix = env_prefix.upper()
        settings, from_config = _apply_sources(
            cls(url=f"sqlite:///{_DEFAULT_DB_PATH.resolve()}"),
            config,
            {f.name: f"{prefix}DB_{f.name.upper()}" for f in fields(cls)},
        )

        path_override = os.environ.get(f"{prefix}DB_PATH")
        if "url" not in from_config and not os.environ.get(f"{prefix}DB_URL") and path_override:
            settings.url = f"sqlite:///{Path(path_override).resolve()}"
        return settings


def load_database_settings(
    config: Mapping[str, Any] | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> DatabaseSettings:
    """Convenience wrapper used by CLI entry points."""
    return DatabaseSettings.from_sources(config=config, env_prefix=env_prefix)


@dataclass(slots=True)
class EnrichmentSettings:
    """Runtime configuration controlling identification and enrichment behaviour."""

    ipinfo_token: str = ""
    ipinfo_base_url: str = "https://ipinfo.io"
    firmographic_api_key: str = ""
    firmographic_base_url: str = "https://api.apollo.io/api/v1"
    http_timeout: float = 10.0
    dns_timeout: float = 3.0
    ipinfo_cache_ttl: int = 24 * 3600
    firmographic_cache_ttl: int = 7 * 24 * 3600
    ipinfo_rate_limit: float = 10.0
    firmographic_rate_limit: float = 5.0
    task_batch_size: int = 20
    visit_page_size: int = 100
    session_page_size: int = 50

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env_prefix: str = DEFAULT_ENV_PREFIX,
    ) -> "EnrichmentSettings":
        """Build enrichment settings with the same precedence rules as ``DatabaseSettings``.

        Environment variables are the upper-cased field names behind the prefix,
        e.g. ``PROSPECTPROC_IPINFO_TOKEN`` or ``PROSPECTPROC_TASK_BATCH_SIZE``.
        """
        prefix = env_prefix.upper()
        settings, _ = _apply_sources(cls(), config, {f.name: f"{prefix}{f.name.upper()}" for f in fields(cls)})
        return settings


def load_enrichment_settings(
    config: Mapping[str, Any] | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> EnrichmentSettings:
    """Convenience wrapper used by CLI entry points."""
    return EnrichmentSettings.from_sources(config=config, env_prefix=env_prefix)


__all__ = [
    "DatabaseSettings",
    "EnrichmentSettings",
    "load_database_settings",
    "load_enrichment_settings",
]
