"""Client geography check.

Country resolution is an injected capability; this module only owns
the decision. Anything that cannot be classified is denied.
"""

from __future__ import annotations

import csv
import ipaddress
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Protocol

import structlog

from credit_gate.errors import CountryLookupError

logger = structlog.get_logger()

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class CountryLookup(Protocol):
    """IP-to-country capability.

    Returns an ISO 3166-1 alpha-2 code, or None when the address is
    not covered. May raise CountryLookupError.
    """

    def country_of(self, ip: str) -> str | None: ...


class NetworkTableLookup:
    """In-process CIDR table mapping networks to country codes.

    Longest prefix wins when networks overlap.
    """

    def __init__(self, table: Mapping[str, Iterable[str]]) -> None:
        entries: list[tuple[IPNetwork, str]] = []
        for country, networks in table.items():
            for network in networks:
                entries.append(
                    (ipaddress.ip_network(network, strict=False), country.upper())
                )
        entries.sort(key=lambda entry: entry[0].prefixlen, reverse=True)
        self._entries = entries

    @classmethod
    def from_csv(cls, path: Path) -> NetworkTableLookup:
        """Load ``network,country`` rows; blank lines and ``#`` comments skipped."""
        table: dict[str, list[str]] = {}
        with path.open(newline="", encoding="utf-8") as fh:
            for row in csv.reader(fh):
                if not row or row[0].lstrip().startswith("#"):
                    continue
                if len(row) < 2:
                    raise ValueError(f"Malformed geo row in {path}: {row!r}")
                network, country = row[0].strip(), row[1].strip()
                table.setdefault(country, []).append(network)
        return cls(table)

    def __len__(self) -> int:
        return len(self._entries)

    def country_of(self, ip: str) -> str | None:
        try:
            address = ipaddress.ip_address(ip.strip())
        except ValueError as exc:
            raise CountryLookupError(f"Not an IP address: {ip!r}") from exc

        for network, country in self._entries:
            if address.version == network.version and address in network:
                return country
        return None


class GeoResolver:
    """Single-country allow decision on top of a CountryLookup."""

    def __init__(self, lookup: CountryLookup, allowed_country: str) -> None:
        self._lookup = lookup
        self._allowed_country = allowed_country.upper()

    @property
    def allowed_country(self) -> str:
        return self._allowed_country

    def is_allowed_country(self, ip: str) -> bool:
        """True only when the lookup positively resolves to the allowed country.

        Unresolvable addresses and lookup failures are denied.
        """
        if not ip:
            return False
        try:
            country = self._lookup.country_of(ip)
        except CountryLookupError as exc:
            logger.warning("geo_lookup_failed", ip=ip, error=str(exc))
            return False

        if country is None:
            logger.debug("geo_country_unknown", ip=ip)
            return False
        return country.upper() == self._allowed_country
