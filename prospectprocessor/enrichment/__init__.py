"""Company identification, caching, and firmographic enrichment."""

from __future__ import annotations

from importlib import import_module

from .cache import FIRMOGRAPHIC_CACHE_TTL, IPINFO_CACHE_TTL, TTLCache

_LAZY_EXPORTS = {
    "FirmographicClient": ".firmographic_client",
    "IPDedupCollaborator": ".ip_dedup",
    "IPInfoClient": ".ipinfo_client",
    "IPRangeDirectory": ".ip_ranges",
    "IdentitySourceResolver": ".identity_resolver",
    "EnrichmentTaskProcessor": ".task_processor",
    "ReverseDNSLookup": ".reverse_dns",
}

__all__ = ["FIRMOGRAPHIC_CACHE_TTL", "IPINFO_CACHE_TTL", "TTLCache", *_LAZY_EXPORTS]


def __getattr__(name: str) -> type:
    if name in _LAZY_EXPORTS:
        module = import_module(_LAZY_EXPORTS[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module 'prospectprocessor.enrichment' has no attribute {name!r}")
