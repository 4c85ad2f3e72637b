"""Tests for storefront identity validation."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from credit_gate.errors import RegistryUnavailableError
from credit_gate.storefronts.domains import MatchRule
from credit_gate.storefronts.validator import Storefront, StorefrontValidator


def _storefront(name: str, client_id: str = "CID-1") -> Storefront:
    return Storefront(name=name, client_id=client_id, integration_type=13, status=1)


def _registry(result: Storefront | None = None) -> AsyncMock:
    registry = AsyncMock()
    registry.find_active.return_value = result
    return registry


class TestStorefrontValidator:
    async def test_platform_subdomain_matches_bare_primary(self) -> None:
        validator = StorefrontValidator(_registry(_storefront("shop.myshopify.com")))

        result = await validator.validate("CID-1", "shop", "")

        assert result.ok is True
        assert result.storefront is not None
        assert result.storefront.name == "shop.myshopify.com"

    async def test_exact_match_on_permanent_domain(self) -> None:
        validator = StorefrontValidator(_registry(_storefront("custom.com")))

        result = await validator.validate("CID-1", "www.other.com", "custom.com")

        assert result.ok is True
        assert result.rule is MatchRule.EXACT

    async def test_stored_url_with_scheme(self) -> None:
        validator = StorefrontValidator(_registry(_storefront("https://Custom.com/")))
        result = await validator.validate("CID-1", "custom.com", "x.myshopify.com")
        assert result.ok is True

    async def test_domain_mismatch(self) -> None:
        """A known cid bound to another domain does not validate."""
        validator = StorefrontValidator(_registry(_storefront("other.com")))

        result = await validator.validate("CID-1", "shop.bg", "shop.myshopify.com")

        assert result.ok is False
        assert result.storefront is None

    async def test_unknown_client_id(self) -> None:
        registry = _registry(None)
        validator = StorefrontValidator(registry)

        result = await validator.validate("NOPE", "shop.bg", "shop.myshopify.com")

        assert result.ok is False
        registry.find_active.assert_awaited_once_with("NOPE")

    async def test_registry_error_is_lookup_failure(self) -> None:
        registry = AsyncMock()
        registry.find_active.side_effect = RegistryUnavailableError("conn refused")
        validator = StorefrontValidator(registry)

        result = await validator.validate("CID-1", "shop.bg", "")

        assert result.ok is False
        assert result.detail == ""

    async def test_registry_error_detail_when_exposed(self) -> None:
        registry = AsyncMock()
        registry.find_active.side_effect = RegistryUnavailableError("conn refused")
        validator = StorefrontValidator(registry, expose_error_detail=True)

        result = await validator.validate("CID-1", "shop.bg", "")

        assert result.ok is False
        assert result.detail == "conn refused"

    async def test_registry_timeout_is_lookup_failure(self) -> None:
        async def slow_lookup(client_id: str) -> Storefront:
            await asyncio.sleep(5)
            return _storefront("shop.bg")

        registry = AsyncMock()
        registry.find_active.side_effect = slow_lookup
        validator = StorefrontValidator(registry, timeout_seconds=0.01)

        result = await validator.validate("CID-1", "shop.bg", "")

        assert result.ok is False

    async def test_custom_platform_suffix(self) -> None:
        validator = StorefrontValidator(
            _registry(_storefront("shop.shops.example")),
            platform_suffix=".shops.example",
        )
        result = await validator.validate("CID-1", "custom.bg", "shop.shops.example")
        assert result.ok is True

    @pytest.mark.parametrize("stored", ["", "   ", "https://"])
    async def test_blank_stored_domain_never_matches(self, stored: str) -> None:
        validator = StorefrontValidator(_registry(_storefront(stored)))
        result = await validator.validate("CID-1", "", "")
        assert result.ok is False
