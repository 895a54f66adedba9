"""Confidence-weighted company identification for a visitor IP address.

Sources are consulted as an ordered cascade of layers, weakest first:

1. ASN/organization data from IPInfo (confidence 0.6 for ``as_name``, 0.5 for ``org``)
2. Reverse DNS hostname of the address (confidence 0.8)
3. Known corporate IP ranges (confidence 0.9)

A layer's signal replaces the current identity only when the current
confidence is below that layer's threshold, so a later, stronger source always
wins over an earlier, weaker one. A layer that fails is logged and skipped;
:meth:`IdentitySourceResolver.resolve` never raises.

Example:
    >>> resolver = IdentitySourceResolver(
    ...     ipinfo=IPInfoClient(token="..."),
    ...     reverse_dns=ReverseDNSLookup(timeout=3.0),
    ...     ip_ranges=IPRangeDirectory(session_factory),
    ... )
    >>> identity = resolver.resolve("203.0.113.7")
    >>> identity.company_name, identity.source, identity.confidence
    ('Acme', <IdentitySource.IP_RANGE: 'ip_range'>, 0.9)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, Optional

from prospectprocessor.telemetry import start_span

from .ip_ranges import IPRangeDirectory
from .ipinfo_client import IPInfoClient, extract_company_name
from .reverse_dns import ReverseDNSLookup, domain_to_company_name, extract_registrable_domain

logger = logging.getLogger(__name__)

ASN_NAME_CONFIDENCE = 0.6
ORG_NAME_CONFIDENCE = 0.5
REVERSE_DNS_CONFIDENCE = 0.8
IP_RANGE_CONFIDENCE = 0.9


class IdentitySource(str, Enum):
    """Where a company identification came from."""

    IPINFO_ASN = "ipinfo_asn"
    IPINFO_ORG = "ipinfo_org"
    REVERSE_DNS = "reverse_dns"
    IP_RANGE = "ip_range"


@dataclass(frozen=True)
class IdentitySignal:
    """One source's answer for an IP address."""

    source: IdentitySource
    company_name: Optional[str]
    company_domain: Optional[str]
    confidence: float
    raw_payload: Any = None


@dataclass
class ResolvedIdentity:
    """Best identity found for an IP address.

    Attributes:
        company_name: Company name, or None when nothing was found
        company_domain: Company domain, when the winning source supplied one
        source: Source of the winning signal
        confidence: Confidence of the winning signal, 0.0 when nothing was found
        raw_data: Payloads of every layer that produced a signal, keyed by layer name
    """

    company_name: Optional[str] = None
    company_domain: Optional[str] = None
    source: Optional[IdentitySource] = None
    confidence: float = 0.0
    raw_data: dict[str, Any] = field(default_factory=dict)

    @property
    def identified(self) -> bool:
        return bool(self.company_name)

    def as_dict(self) -> dict[str, Any]:
        return {
            "company_name": self.company_name,
            "company_domain": self.company_domain,
            "source": self.source.value if self.source else None,
            "confidence": self.confidence,
            "raw_data": self.raw_data,
        }


@dataclass(frozen=True)
class CascadeLayer:
    """A named lookup and the confidence below which its signal is applied."""

    name: str
    lookup: Callable[[str], Optional[IdentitySignal]]
    overwrite_below: float


class IdentitySourceResolver:
    """Resolve an IP address to a company through an ordered layer cascade."""

    def __init__(
        self,
        ipinfo: Optional[IPInfoClient] = None,
        reverse_dns: Optional[ReverseDNSLookup] = None,
        ip_ranges: Optional[IPRangeDirectory] = None,
        layers: Optional[list[CascadeLayer]] = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            ipinfo: ASN/organization client; the layer is omitted when None
            reverse_dns: PTR lookup; the layer is omitted when None
            ip_ranges: Corporate range directory; the layer is omitted when None
            layers: Explicit cascade, replacing the one built from the clients
        """
        self.ipinfo = ipinfo
        self.reverse_dns = reverse_dns
        self.ip_ranges = ip_ranges
        self.layers = layers if layers is not None else self._default_layers()

        self.stats: dict[str, int] = {
            'resolutions': 0,
            'identified': 0,
            'unidentified': 0,
            'layer_failures': 0,
        }
        for source in IdentitySource:
            self.stats[f'source_{source.value}'] = 0

    def _default_layers(self) -> list[CascadeLayer]:
        layers: list[CascadeLayer] = []
        if self.ipinfo is not None:
            layers.append(CascadeLayer("ipinfo", partial(self._lookup_asn, self.ipinfo), ASN_NAME_CONFIDENCE))
        if self.reverse_dns is not None:
            layers.append(
                CascadeLayer("dns", partial(self._lookup_reverse_dns, self.reverse_dns), REVERSE_DNS_CONFIDENCE)
            )
        if self.ip_ranges is not None:
            layers.append(CascadeLayer("ip_range", partial(self._lookup_ip_range, self.ip_ranges), IP_RANGE_CONFIDENCE))
        return layers

    def resolve(self, ip_address: str) -> ResolvedIdentity:
        """Return the best company identity for ``ip_address``.

        Always returns a result; an empty one (confidence 0.0) when no layer
        produced a signal.
        """
        self.stats['resolutions'] += 1
        identity = ResolvedIdentity()

        with start_span("prospectprocessor.identity.resolve", {"ip.address": ip_address}) as span:
            for layer in self.layers:
                try:
                    signal = layer.lookup(ip_address)
                except Exception as e:
                    self.stats['layer_failures'] += 1
                    logger.warning(f"{layer.name} lookup failed for {ip_address}: {e}")
                    continue

                if signal is None:
                    continue

                identity.raw_data[layer.name] = signal.raw_payload
                if identity.confidence < layer.overwrite_below:
                    identity.company_name = signal.company_name
                    identity.company_domain = signal.company_domain
                    identity.source = signal.source
                    identity.confidence = signal.confidence
                    logger.debug(
                        f"{layer.name} identified {ip_address} as {signal.company_name} "
                        f"(confidence {signal.confidence})"
                    )

            if identity.identified and identity.source is not None:
                self.stats['identified'] += 1
                self.stats[f'source_{identity.source.value}'] += 1
                span.set_attribute("identity.source", identity.source.value)
            else:
                self.stats['unidentified'] += 1
            span.set_attribute("identity.confidence", identity.confidence)

        return identity

    @staticmethod
    def _lookup_asn(ipinfo: IPInfoClient, ip_address: str) -> Optional[IdentitySignal]:
        info = ipinfo.lookup_ip(ip_address)

        if info.as_name:
            source, name, confidence = IdentitySource.IPINFO_ASN, info.as_name, ASN_NAME_CONFIDENCE
        elif info.org:
            source, name, confidence = IdentitySource.IPINFO_ORG, extract_company_name(info.org), ORG_NAME_CONFIDENCE
        else:
            return None

        if not name:
            return None
        return IdentitySignal(source, name, info.as_domain, confidence, info.raw)

    @staticmethod
    def _lookup_reverse_dns(reverse_dns: ReverseDNSLookup, ip_address: str) -> Optional[IdentitySignal]:
        hostnames = reverse_dns.lookup(ip_address)
        if not hostnames:
            return None

        domain = extract_registrable_domain(hostnames[0])
        if domain is None:
            return None
        return IdentitySignal(
            IdentitySource.REVERSE_DNS,
            domain_to_company_name(domain),
            domain,
            REVERSE_DNS_CONFIDENCE,
            hostnames,
        )

    @staticmethod
    def _lookup_ip_range(ip_ranges: IPRangeDirectory, ip_address: str) -> Optional[IdentitySignal]:
        match = ip_ranges.find(ip_address)
        if match is None:
            return None
        return IdentitySignal(
            IdentitySource.IP_RANGE,
            match.company_name,
            match.company_domain,
            IP_RANGE_CONFIDENCE,
            match.as_dict(),
        )

    def get_stats(self) -> dict[str, int]:
        """Get resolver statistics."""
        return dict(self.stats)


__all__ = [
    "ASN_NAME_CONFIDENCE",
    "CascadeLayer",
    "IP_RANGE_CONFIDENCE",
    "IdentitySignal",
    "IdentitySource",
    "IdentitySourceResolver",
    "ORG_NAME_CONFIDENCE",
    "REVERSE_DNS_CONFIDENCE",
    "ResolvedIdentity",
]
