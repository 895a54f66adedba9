"""Directory of known corporate IPv4 ranges.

Ranges are stored as inclusive ``[start_ip, end_ip]`` pairs of unsigned 32-bit
integers. Lookups scan the ranges in insertion order and return the first one
containing the address.
"""

from __future__ import annotations

import csv
import ipaddress
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from prospectprocessor.db.models import IPRange
from prospectprocessor.exceptions import SignalLookupError

logger = logging.getLogger(__name__)


def ip_to_number(ip_address: str) -> int:
    """Convert a dotted-quad IPv4 address to an unsigned 32-bit integer.

    Examples:
        >>> ip_to_number("10.0.0.1")
        167772161
        >>> ip_to_number("255.255.255.255")
        4294967295

    Raises:
        ValueError: If ``ip_address`` is not an IPv4 address.
    """
    return int(ipaddress.IPv4Address(ip_address.strip()))


@dataclass(frozen=True)
class IPRangeMatch:
    """A stored range that contains the looked-up address."""

    range_id: int
    start_ip: int
    end_ip: int
    company_name: str
    company_domain: str | None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class IPRangeDirectory:
    """First-match lookup over the ``ip_ranges`` table.

    Ranges are read once and kept in memory; call :meth:`reload` after the
    table changes outside this instance.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory
        self._ranges: list[IPRangeMatch] | None = None

    def reload(self) -> int:
        """Reload ranges from the database and return how many were loaded.

        Raises:
            SignalLookupError: If the table cannot be read.
        """
        try:
            with self.session_factory() as session:
                rows = session.execute(select(IPRange).order_by(IPRange.id)).scalars().all()
                self._ranges = [
                    IPRangeMatch(
                        range_id=row.id,
                        start_ip=row.start_ip,
                        end_ip=row.end_ip,
                        company_name=row.company_name,
                        company_domain=row.company_domain,
                    )
                    for row in rows
                ]
        except SQLAlchemyError as e:
            raise SignalLookupError("ip_range", f"could not load ranges: {e}") from e

        logger.debug(f"Loaded {len(self._ranges)} IP ranges")
        return len(self._ranges)

    def find(self, ip_address: str) -> IPRangeMatch | None:
        """Return the first stored range containing ``ip_address``.

        Non-IPv4 addresses never match.
        """
        if self._ranges is None:
            self.reload()

        try:
            value = ip_to_number(ip_address)
        except ValueError:
            logger.debug(f"Skipping range lookup for non-IPv4 address {ip_address}")
            return None

        for ip_range in self._ranges or []:
            if ip_range.start_ip <= value <= ip_range.end_ip:
                return ip_range
        return None

    def add_range(
        self,
        start_ip: str,
        end_ip: str,
        company_name: str,
        company_domain: str | None = None,
    ) -> int:
        """Store a new range and return its id.

        Raises:
            ValueError: If either bound is not IPv4 or ``start_ip > end_ip``.
        """
        start, end = ip_to_number(start_ip), ip_to_number(end_ip)
        if start > end:
            raise ValueError(f"Range start {start_ip} is after end {end_ip}")
        if not company_name.strip():
            raise ValueError("company_name is required")

        with self.session_factory() as session, session.begin():
            row = IPRange(
                start_ip=start,
                end_ip=end,
                company_name=company_name.strip(),
                company_domain=(company_domain or "").strip().lower() or None,
            )
            session.add(row)
            session.flush()
            range_id = row.id

        self._ranges = None
        logger.info(f"Added IP range {start_ip}-{end_ip} for {company_name}")
        return range_id

    def add_cidr(self, cidr: str, company_name: str, company_domain: str | None = None) -> int:
        """Store the range covered by an IPv4 network such as ``192.0.2.0/24``."""
        network = ipaddress.IPv4Network(cidr.strip(), strict=False)
        return self.add_range(
            str(network.network_address), str(network.broadcast_address), company_name, company_domain
        )

    def load_rows(self, rows: Iterable[dict[str, str]]) -> int:
        """Store ranges from CSV-style rows and return how many were added.

        Each row carries ``company_name``, optional ``company_domain`` and either
        ``cidr`` or ``start``/``end``. Invalid rows are logged and skipped.
        """
        added = 0
        for line_number, row in enumerate(rows, start=1):
            name = (row.get("company_name") or "").strip()
            domain = (row.get("company_domain") or "").strip() or None
            cidr = (row.get("cidr") or "").strip()
            try:
                if cidr:
                    self.add_cidr(cidr, name, domain)
                else:
                    self.add_range(row.get("start") or "", row.get("end") or "", name, domain)
            except ValueError as e:
                logger.warning(f"Skipping range row {line_number}: {e}")
                continue
            added += 1
        return added

    def load_csv(self, path: Path) -> int:
        """Import ranges from a CSV file with a header row."""
        with path.open(newline="", encoding="utf-8") as handle:
            return self.load_rows(csv.DictReader(handle))


__all__ = ["IPRangeDirectory", "IPRangeMatch", "ip_to_number"]
