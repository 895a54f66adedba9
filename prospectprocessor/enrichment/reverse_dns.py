"""Reverse DNS (PTR) lookups and hostname-to-company heuristics."""

from __future__ import annotations

import logging

import dns.exception
import dns.resolver
import dns.reversename

from prospectprocessor.exceptions import SignalLookupError

logger = logging.getLogger(__name__)


def extract_registrable_domain(hostname: str) -> str | None:
    """Return the last two labels of ``hostname``.

    Examples:
        >>> extract_registrable_domain("edge-star-mini-shv-01-amt2.facebook.com")
        'facebook.com'
        >>> extract_registrable_domain("localhost") is None
        True
    """
    labels = [label for label in hostname.strip().rstrip(".").lower().split(".") if label]
    if len(labels) < 2:
        return None
    return f"{labels[-2]}.{labels[-1]}"


def domain_to_company_name(domain: str) -> str:
    """Capitalize the first label of a domain: ``google.com`` -> ``Google``."""
    label = domain.split(".")[0]
    return label[:1].upper() + label[1:]


class ReverseDNSLookup:
    """PTR lookups through dnspython with a per-query lifetime."""

    def __init__(self, timeout: float = 3.0) -> None:
        self.timeout = timeout
        self.stats = {'lookups': 0, 'answers': 0, 'empty': 0, 'errors': 0}

    def lookup(self, ip_address: str) -> list[str]:
        """Return PTR hostnames for ``ip_address`` without trailing dots.

        An address with no PTR record yields an empty list.

        Raises:
            SignalLookupError: On timeout, malformed address, or resolver failure.
        """
        self.stats['lookups'] += 1

        try:
            query_name = dns.reversename.from_address(ip_address)
        except (dns.exception.SyntaxError, ValueError) as e:
            self.stats['errors'] += 1
            raise SignalLookupError("reverse_dns", f"invalid address {ip_address!r}") from e

        try:
            answers = dns.resolver.resolve(query_name, "PTR", lifetime=self.timeout)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            logger.debug(f"No PTR record for {ip_address}")
            self.stats['empty'] += 1
            return []
        except dns.exception.Timeout as e:
            self.stats['errors'] += 1
            raise SignalLookupError("reverse_dns", f"timeout after {self.timeout}s for {ip_address}") from e
        except dns.exception.DNSException as e:
            self.stats['errors'] += 1
            raise SignalLookupError("reverse_dns", f"lookup failed for {ip_address}: {e}") from e

        hostnames = [rdata.to_text().rstrip(".") for rdata in answers]
        if hostnames:
            self.stats['answers'] += 1
        else:
            self.stats['empty'] += 1
        return hostnames


__all__ = ["ReverseDNSLookup", "domain_to_company_name", "extract_registrable_domain"]
