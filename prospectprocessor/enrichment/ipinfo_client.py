"""IPInfo API client for ASN/organization lookups.

API:
    GET https://ipinfo.io/{ip}?token=<token>

Response Format (fields used by the resolver):
    {
        "ip": "8.8.8.8",
        "asn": "AS15169",
        "as_name": "Google LLC",
        "as_domain": "google.com",
        "org": "AS15169 Google LLC",
        "country": "US",
        "city": "Mountain View"
    }

Cache TTL: 24 hours, keyed by IP address.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

import requests

from prospectprocessor.exceptions import IPInfoAPIError

from .cache import IPINFO_CACHE_TTL, TTLCache
from .rate_limiting import RateLimitedSession, get_service_rate_limit

logger = logging.getLogger(__name__)

_AS_PREFIX = re.compile(r"^AS\d+\s+(.*)$")


def extract_company_name(org: str) -> str | None:
    """Strip a leading ``AS<digits>`` token from an organization string.

    Examples:
        >>> extract_company_name("AS15169 Google LLC")
        'Google LLC'
        >>> extract_company_name("Acme Corp")
        'Acme Corp'
        >>> extract_company_name("   ") is None
        True
    """
    value = org.strip()
    match = _AS_PREFIX.match(value)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return value or None


@dataclass
class IPInfoResult:
    """ASN/organization data for one IP address.

    Attributes:
        ip_address: The IP address that was looked up
        as_name: Name of the autonomous system owner
        as_domain: Domain of the autonomous system owner
        org: Raw organization string, usually ``AS<number> <name>``
        asn: Autonomous system identifier (``AS15169``)
        country: ISO country code
        city: City name
        raw: Full JSON payload as returned by the API
        cached: True when served from the cache
    """

    ip_address: str
    as_name: str | None = None
    as_domain: str | None = None
    org: str | None = None
    asn: str | None = None
    country: str | None = None
    city: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    cached: bool = False

    @classmethod
    def from_payload(cls, ip_address: str, data: dict[str, Any], cached: bool = False) -> "IPInfoResult":
        return cls(
            ip_address=ip_address,
            as_name=data.get("as_name") or None,
            as_domain=data.get("as_domain") or None,
            org=data.get("org") or None,
            asn=data.get("asn") or None,
            country=data.get("country") or data.get("country_code") or None,
            city=data.get("city") or None,
            raw=data,
            cached=cached,
        )


class IPInfoClient:
    """IPInfo client with a 24-hour TTL cache.

    Usage:
        cache = TTLCache(ttl=IPINFO_CACHE_TTL, name="ipinfo")
        client = IPInfoClient(token="...", cache=cache)
        result = client.lookup_ip("8.8.8.8")
        print(result.as_name)
    """

    API_BASE_URL = "https://ipinfo.io"

    def __init__(
        self,
        token: str,
        cache: TTLCache[str, dict[str, Any]] | None = None,
        http: RateLimitedSession | None = None,
        base_url: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize IPInfo client.

        Args:
            token: IPInfo access token (may be empty for the unauthenticated tier)
            cache: Cache for raw responses keyed by IP (defaults to in-memory, 24h)
            http: Rate-limited HTTP session (defaults to the ipinfo service limit)
            base_url: API root, overridable for tests and proxies
            timeout: Transport timeout in seconds
        """
        self.token = token
        self.cache = cache if cache is not None else TTLCache(ttl=IPINFO_CACHE_TTL, name="ipinfo")
        if http is None:
            rate, burst = get_service_rate_limit("ipinfo")
            http = RateLimitedSession(rate_limit=rate, burst=burst, timeout=timeout)
        self.http = http
        self.base_url = (base_url or self.API_BASE_URL).rstrip("/")
        self.timeout = timeout

        self.stats: dict[str, int] = {
            'lookups': 0,
            'cache_hits': 0,
            'cache_misses': 0,
            'api_success': 0,
            'api_failures': 0,
        }

        logger.info("IPInfo client initialized with 24-hour cache TTL")

    def lookup_ip(self, ip_address: str) -> IPInfoResult:
        """Return ASN/organization data for ``ip_address``.

        Raises:
            IPInfoAPIError: On transport failure, non-2xx status, or a non-JSON body.
                Failures are never cached.
        """
        self.stats['lookups'] += 1

        cached_data = self.cache.get(ip_address)
        if cached_data is not None:
            self.stats['cache_hits'] += 1
            logger.debug(f"Using cached IP info for {ip_address}")
            return IPInfoResult.from_payload(ip_address, cached_data, cached=True)

        self.stats['cache_misses'] += 1
        logger.debug(f"Fetching IP info for {ip_address}")

        try:
            response = self.http.get(
                f"{self.base_url}/{ip_address}",
                params={"token": self.token},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            self.stats['api_failures'] += 1
            raise IPInfoAPIError(f"IPInfo request failed for {ip_address}: {e}") from e

        if not 200 <= response.status_code < 300:
            self.stats['api_failures'] += 1
            raise IPInfoAPIError(f"IPInfo API error: {response.status_code}", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            self.stats['api_failures'] += 1
            raise IPInfoAPIError(f"IPInfo returned invalid JSON for {ip_address}") from e

        if not isinstance(data, dict):
            self.stats['api_failures'] += 1
            raise IPInfoAPIError(f"IPInfo returned unexpected payload for {ip_address}")

        self.stats['api_success'] += 1
        self.cache.set(ip_address, data)
        return IPInfoResult.from_payload(ip_address, data)

    def batch_lookup(self, ip_addresses: Iterable[str], batch_size: int = 10) -> dict[str, IPInfoResult]:
        """Look up many IPs in groups of ``batch_size``, skipping the ones that fail.

        Duplicate addresses are looked up once. Pacing comes from the session's
        rate limiter.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        unique_ips = list(dict.fromkeys(ip_addresses))
        results: dict[str, IPInfoResult] = {}

        for start in range(0, len(unique_ips), batch_size):
            batch = unique_ips[start : start + batch_size]
            for ip_address in batch:
                try:
                    results[ip_address] = self.lookup_ip(ip_address)
                except IPInfoAPIError as e:
                    logger.warning(f"Skipping {ip_address} in batch lookup: {e}")
            logger.debug(f"IPInfo batch {start // batch_size + 1}: {len(batch)} addresses")

        return results

    def get_stats(self) -> dict[str, int]:
        """Get client statistics."""
        return dict(self.stats)


__all__ = ["IPInfoClient", "IPInfoResult", "extract_company_name"]
