"""Domain-specific exceptions for credit-gate.

Normal admission rejections are not exceptions; these cover
environmental failures that each component resolves with its own
fallback policy.
"""


class CreditGateError(Exception):
    """Base class for credit-gate errors."""


class CounterStoreUnavailableError(CreditGateError):
    """Counter store could not be read, locked, or written."""


class CountryLookupError(CreditGateError):
    """IP-to-country capability could not classify an address."""


class RegistryUnavailableError(CreditGateError):
    """Storefront registry query failed or timed out."""
