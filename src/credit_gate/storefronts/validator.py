"""Storefront identity validation.

A client identifier alone proves nothing: the registry row it points
to must also be bound to one of the domains the widget reported.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

import structlog

from credit_gate.errors import RegistryUnavailableError
from credit_gate.storefronts.domains import (
    DEFAULT_PLATFORM_SUFFIX,
    MatchRule,
    match_domains,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class Storefront:
    """Registry row for one merchant integration. Read-only."""

    name: str
    client_id: str
    integration_type: int
    status: int


class StorefrontRegistry(Protocol):
    """Registry query capability.

    Returns at most one eligible (right integration type, active)
    storefront for ``client_id``. Raises RegistryUnavailableError on
    query or connection failure.
    """

    async def find_active(self, client_id: str) -> Storefront | None: ...


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    storefront: Storefront | None = None
    rule: MatchRule | None = None
    detail: str = ""


class StorefrontValidator:
    """Look up a client identifier and check its domain binding."""

    def __init__(
        self,
        registry: StorefrontRegistry,
        *,
        platform_suffix: str = DEFAULT_PLATFORM_SUFFIX,
        timeout_seconds: float = 3.0,
        expose_error_detail: bool = False,
    ) -> None:
        self._registry = registry
        self._platform_suffix = platform_suffix
        self._timeout = timeout_seconds
        self._expose_error_detail = expose_error_detail

    async def validate(
        self,
        client_id: str,
        primary_domain: str,
        permanent_domain: str,
    ) -> ValidationResult:
        """Return the matched storefront, or ``ok=False``.

        Registry failures and timeouts count as a failed lookup. Their
        text is only placed in ``detail`` when error detail exposure is
        enabled (never in production).
        """
        try:
            storefront = await asyncio.wait_for(
                self._registry.find_active(client_id), timeout=self._timeout
            )
        except (TimeoutError, RegistryUnavailableError) as exc:
            error = "registry timeout" if isinstance(exc, TimeoutError) else str(exc)
            logger.warning(
                "storefront_lookup_failed",
                client_id=client_id,
                error=error,
            )
            return ValidationResult(
                ok=False, detail=error if self._expose_error_detail else ""
            )

        if storefront is None:
            logger.info("storefront_not_found", client_id=client_id)
            return ValidationResult(ok=False)

        rule = match_domains(
            storefront.name,
            primary_domain,
            permanent_domain,
            suffix=self._platform_suffix,
        )
        if rule is None:
            logger.info(
                "storefront_domain_mismatch",
                client_id=client_id,
                shop_domain=primary_domain,
                shop_permanent_domain=permanent_domain,
            )
            return ValidationResult(ok=False)

        logger.debug("storefront_validated", client_id=client_id, rule=str(rule))
        return ValidationResult(ok=True, storefront=storefront, rule=rule)
