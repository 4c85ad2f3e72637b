"""Domain normalization and storefront domain equivalence."""

from __future__ import annotations

import re
from enum import StrEnum

DEFAULT_PLATFORM_SUFFIX = ".myshopify.com"

_SCHEME = re.compile(r"^https?://")


class MatchRule(StrEnum):
    """Which equivalence rule bound a stored domain to a candidate."""

    EXACT = "exact"
    SUFFIX_STRIPPED = "suffix_stripped"
    STORED_SUFFIX = "stored_suffix"


def _normalize_once(raw: str) -> str:
    value = _SCHEME.sub("", raw.strip().lower())
    return value.rstrip("/")


def normalize_domain(raw: str) -> str:
    """Canonicalize a domain or URL string.

    Trims whitespace, lower-cases, drops a leading ``http://`` or
    ``https://`` and trailing slashes. Repeated until stable, so
    ``normalize_domain(normalize_domain(x)) == normalize_domain(x)``
    holds for inputs like ``"https://http://shop.bg/"`` too.
    """
    value = raw
    while True:
        normalized = _normalize_once(value)
        if normalized == value:
            return normalized
        value = normalized


def strip_platform_suffix(domain: str, suffix: str = DEFAULT_PLATFORM_SUFFIX) -> str:
    """Remove ``suffix`` from the end of an already normalized domain."""
    if suffix and domain.endswith(suffix):
        return domain[: -len(suffix)]
    return domain


def match_domains(
    stored: str,
    primary: str,
    permanent: str,
    suffix: str = DEFAULT_PLATFORM_SUFFIX,
) -> MatchRule | None:
    """Decide whether the registry domain names one of the request domains.

    Rules are tried in order and the first hit wins:

    1. EXACT: normalized stored domain equals either candidate.
    2. SUFFIX_STRIPPED: equality once the platform suffix is removed
       from stored, primary and permanent alike (custom domain vs.
       platform subdomain aliasing).
    3. STORED_SUFFIX: the stored domain carries the suffix, a bare
       candidate does not; compare the stripped stored domain with the
       unstripped candidates.

    Returns:
        The rule that matched, or None.
    """
    stored_clean = normalize_domain(stored)
    primary_clean = normalize_domain(primary)
    permanent_clean = normalize_domain(permanent)

    # An empty registry name must never match an empty candidate.
    if not stored_clean:
        return None

    if stored_clean in (primary_clean, permanent_clean):
        return MatchRule.EXACT

    stored_base = strip_platform_suffix(stored_clean, suffix)
    if stored_base and stored_base in (
        strip_platform_suffix(primary_clean, suffix),
        strip_platform_suffix(permanent_clean, suffix),
    ):
        return MatchRule.SUFFIX_STRIPPED

    if stored_suffix_matches(stored_clean, primary_clean, permanent_clean, suffix):
        return MatchRule.STORED_SUFFIX

    return None


def stored_suffix_matches(
    stored_clean: str,
    primary_clean: str,
    permanent_clean: str,
    suffix: str = DEFAULT_PLATFORM_SUFFIX,
) -> bool:
    """One-sided comparison: only the stored domain loses its suffix."""
    if not suffix or suffix not in stored_clean:
        return False
    stored_base = strip_platform_suffix(stored_clean, suffix)
    return bool(stored_base) and stored_base in (primary_clean, permanent_clean)
