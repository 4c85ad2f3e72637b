"""Storefront registry matching."""

from credit_gate.storefronts.domains import (
    MatchRule,
    match_domains,
    normalize_domain,
    strip_platform_suffix,
)
from credit_gate.storefronts.validator import (
    Storefront,
    StorefrontRegistry,
    StorefrontValidator,
    ValidationResult,
)

__all__ = [
    "MatchRule",
    "Storefront",
    "StorefrontRegistry",
    "StorefrontValidator",
    "ValidationResult",
    "match_domains",
    "normalize_domain",
    "strip_platform_suffix",
]
