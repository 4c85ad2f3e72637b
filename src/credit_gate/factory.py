"""Composition root -- builds the admission pipeline and validator from settings.

Counter stores are chosen via COUNTER_STORE_BUILDERS; adding a backend
requires only a new entry there.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credit_gate.config import CounterBackend, Settings
from credit_gate.security.bot import UserAgentHeuristic
from credit_gate.security.geo import CountryLookup, GeoResolver, NetworkTableLookup
from credit_gate.security.pipeline import AdmissionPipeline, AdmissionPolicy
from credit_gate.security.rate_limiter import (
    CounterStore,
    FileCounterStore,
    FixedWindowRateLimiter,
    InMemoryCounterStore,
    RedisCounterStore,
)
from credit_gate.storage.registry import SqlStorefrontRegistry
from credit_gate.storefronts.validator import StorefrontValidator

logger = structlog.get_logger()


COUNTER_STORE_BUILDERS: dict[CounterBackend, Callable[[Settings], CounterStore]] = {
    CounterBackend.FILE: lambda s: FileCounterStore(
        s.counter_dir, lock_timeout=s.counter_lock_timeout_seconds
    ),
    CounterBackend.MEMORY: lambda s: InMemoryCounterStore(
        lock_timeout=s.counter_lock_timeout_seconds
    ),
    CounterBackend.REDIS: lambda s: RedisCounterStore.from_url(
        s.redis_url, timeout=s.counter_lock_timeout_seconds
    ),
}


@dataclass(frozen=True)
class Gate:
    """Everything a request handler needs, built once per process."""

    pipeline: AdmissionPipeline
    validator: StorefrontValidator
    rate_limiter: FixedWindowRateLimiter

    def close(self) -> None:
        """Release backend connections held by the counter store."""
        store = self.rate_limiter.store
        if isinstance(store, RedisCounterStore):
            store.close()


def create_counter_store(settings: Settings) -> CounterStore:
    store = COUNTER_STORE_BUILDERS[settings.counter_backend](settings)
    logger.info("counter_store_created", backend=str(settings.counter_backend))
    return store


def create_country_lookup(settings: Settings) -> CountryLookup:
    """Load the CIDR table, or an empty one when no file is configured.

    With an empty table every address is unknown and therefore denied.
    """
    if settings.geo_networks_file is None:
        logger.warning("geo_networks_not_configured")
        return NetworkTableLookup({})
    lookup = NetworkTableLookup.from_csv(settings.geo_networks_file)
    logger.info(
        "geo_networks_loaded",
        path=str(settings.geo_networks_file),
        networks=len(lookup),
    )
    return lookup


def create_admission_policy(settings: Settings) -> AdmissionPolicy:
    return AdmissionPolicy(
        ip_limit=settings.ip_rate_limit,
        cid_limit=settings.cid_rate_limit,
        rate_window_seconds=settings.rate_limit_window_seconds,
        retry_after_seconds=settings.retry_after_seconds,
        timestamp_window_seconds=settings.timestamp_window_seconds,
        trust_forwarded_proto=settings.trust_forwarded_proto,
    )


def create_gate(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    country_lookup: CountryLookup | None = None,
    counter_store: CounterStore | None = None,
) -> Gate:
    """Wire the pipeline and validator.

    ``country_lookup`` and ``counter_store`` override the settings-driven
    defaults (used by tests and by deployments with their own geo source).
    """
    if counter_store is None:
        counter_store = create_counter_store(settings)
    if country_lookup is None:
        country_lookup = create_country_lookup(settings)
    rate_limiter = FixedWindowRateLimiter(counter_store)
    pipeline = AdmissionPipeline(
        bot_classifier=UserAgentHeuristic(),
        geo_resolver=GeoResolver(country_lookup, settings.allowed_country),
        rate_limiter=rate_limiter,
        policy=create_admission_policy(settings),
    )
    registry = SqlStorefrontRegistry(
        session_factory,
        integration_type=settings.registry_integration_type,
        active_status=settings.registry_active_status,
    )
    validator = StorefrontValidator(
        registry,
        platform_suffix=settings.platform_suffix,
        timeout_seconds=settings.registry_timeout_seconds,
        expose_error_detail=settings.expose_error_detail,
    )
    return Gate(pipeline=pipeline, validator=validator, rate_limiter=rate_limiter)
