"""Firmographic provider client (Apollo-style organization API).

API:
    GET  {base}/organizations/enrich?domain=<domain>   -> {"organization": {...}}
    POST {base}/mixed_companies/search                 -> {"organizations": [...]}
         body: {"q_organization_name": <name>, "page": 1, "per_page": 5}

Authentication is an ``X-Api-Key`` header. Organization payloads are cached by
domain for 7 days; searches populate the cache for every returned organization
that carries a ``primary_domain``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from prospectprocessor.exceptions import FirmographicAPIError

from .cache import FIRMOGRAPHIC_CACHE_TTL, TTLCache
from .rate_limiting import RateLimitedSession, get_service_rate_limit

logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 5


def normalize_domain(domain: str) -> str:
    """Lower-case and strip a domain so it can be used as a key."""
    return domain.strip().lower()


@dataclass
class OrganizationRecord:
    """Organization payload returned by the provider.

    ``data`` holds the provider's JSON object unchanged; the properties expose
    the fields the pipeline relies on.
    """

    data: dict[str, Any] = field(default_factory=dict)
    cached: bool = False

    @property
    def organization_id(self) -> Optional[str]:
        value = self.data.get("id")
        return str(value) if value is not None else None

    @property
    def name(self) -> Optional[str]:
        return self.data.get("name") or None

    @property
    def primary_domain(self) -> Optional[str]:
        domain = self.data.get("primary_domain")
        return normalize_domain(domain) if isinstance(domain, str) and domain.strip() else None


class FirmographicClient:
    """Cache-backed firmographic client.

    Usage:
        client = FirmographicClient(api_key="...")
        record = client.enrich_by_domain("acme.com")
        if record is not None:
            print(record.name, record.cached)
    """

    API_BASE_URL = "https://api.apollo.io/api/v1"

    def __init__(
        self,
        api_key: str,
        cache: TTLCache[str, dict[str, Any]] | None = None,
        http: RateLimitedSession | None = None,
        base_url: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Provider API key sent as ``X-Api-Key``
            cache: Organization cache keyed by domain (defaults to in-memory, 7 days)
            http: Rate-limited HTTP session (defaults to the firmographic service limit)
            base_url: API root, overridable for tests
            timeout: Transport timeout in seconds
        """
        if not api_key:
            logger.warning("Firmographic API key is empty; requests will be rejected by the provider")

        self.api_key = api_key
        self.cache = cache if cache is not None else TTLCache(ttl=FIRMOGRAPHIC_CACHE_TTL, name="firmographic")
        if http is None:
            rate, burst = get_service_rate_limit("firmographic")
            http = RateLimitedSession(rate_limit=rate, burst=burst, timeout=timeout)
        self.http = http
        self.base_url = (base_url or self.API_BASE_URL).rstrip("/")
        self.timeout = timeout

        self.stats: dict[str, int] = {
            'enrich_requests': 0,
            'search_requests': 0,
            'cache_hits': 0,
            'cache_misses': 0,
            'not_found': 0,
            'api_failures': 0,
        }

        logger.info("Firmographic client initialized with 7-day cache TTL")

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Cache-Control": "no-cache",
            "Content-Type": "application/json",
            "X-Api-Key": self.api_key,
        }

    def enrich_by_domain(self, domain: str) -> Optional[OrganizationRecord]:
        """Return the organization behind ``domain``.

        Returns:
            The record (``cached=True`` when served from the cache), or None when
            the provider has no organization for the domain. Misses are not cached.

        Raises:
            FirmographicAPIError: On transport failure or a non-2xx response.
        """
        key = normalize_domain(domain)
        cached_data = self.cache.get(key)
        if cached_data is not None:
            self.stats['cache_hits'] += 1
            logger.debug(f"Using cached firmographic data for {key}")
            return OrganizationRecord(data=cached_data, cached=True)

        self.stats['cache_misses'] += 1
        self.stats['enrich_requests'] += 1
        logger.debug(f"Fetching firmographic data for {key}")

        payload = self._request("GET", "/organizations/enrich", params={"domain": key})
        organization = payload.get("organization")
        if not isinstance(organization, dict) or not organization:
            self.stats['not_found'] += 1
            logger.info(f"No organization data found for {key}")
            return None

        self.cache.set(key, organization)
        return OrganizationRecord(data=organization, cached=False)

    def search_by_name(self, name: str) -> list[OrganizationRecord]:
        """Search organizations by name (first page, at most five results).

        Every result with a ``primary_domain`` is cached under that domain.

        Raises:
            FirmographicAPIError: On transport failure or a non-2xx response.
        """
        self.stats['search_requests'] += 1
        logger.debug(f"Searching firmographic provider for {name!r}")

        payload = self._request(
            "POST",
            "/mixed_companies/search",
            json={"q_organization_name": name, "page": 1, "per_page": SEARCH_PAGE_SIZE},
        )
        organizations = payload.get("organizations") or []
        if not organizations:
            logger.info(f"No companies found for name {name!r}")
            return []

        records: list[OrganizationRecord] = []
        for organization in organizations[:SEARCH_PAGE_SIZE]:
            if not isinstance(organization, dict):
                continue
            record = OrganizationRecord(data=organization, cached=False)
            if record.primary_domain:
                self.cache.set(record.primary_domain, organization)
            records.append(record)
        return records

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            if method == "GET":
                response = self.http.get(url, headers=self._headers, timeout=self.timeout, **kwargs)
            else:
                response = self.http.post(url, headers=self._headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            self.stats['api_failures'] += 1
            raise FirmographicAPIError(f"Firmographic request to {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            self.stats['api_failures'] += 1
            raise FirmographicAPIError(
                f"Firmographic API error: {response.status_code}", status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            self.stats['api_failures'] += 1
            raise FirmographicAPIError(f"Firmographic API returned invalid JSON from {path}") from e

        return payload if isinstance(payload, dict) else {}

    def get_stats(self) -> dict[str, int]:
        """Get client statistics."""
        return dict(self.stats)


__all__ = ["FirmographicClient", "OrganizationRecord", "SEARCH_PAGE_SIZE", "normalize_domain"]
