"""Integration tests for the Redis counter store.

Requires a running Redis.
Run with: ``uv run pytest tests/integration/test_redis_counter.py --run-redis -v``
"""

from __future__ import annotations

import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest
import redis

from credit_gate.security.rate_limiter import (
    CounterRecord,
    FixedWindowRateLimiter,
    RedisCounterStore,
)

pytestmark = pytest.mark.requires_redis


@pytest.fixture()
def prefix() -> str:
    return f"test:{uuid.uuid4().hex}:"


@pytest.fixture()
def store(redis_client: redis.Redis, prefix: str) -> RedisCounterStore:
    return RedisCounterStore(redis_client, prefix=prefix)


class TestRedisCounterStore:
    def test_increment_and_reset(self, store: RedisCounterStore) -> None:
        assert store.increment("k", 60, 1000) == CounterRecord(1000, 1)
        assert store.increment("k", 60, 1030) == CounterRecord(1000, 2)
        assert store.increment("k", 60, 1060) == CounterRecord(1060, 1)

    def test_key_expires(
        self, store: RedisCounterStore, redis_client: redis.Redis, prefix: str
    ) -> None:
        store.increment("k", 60, 1000)
        ttl = redis_client.ttl(f"{prefix}k")
        assert 0 < ttl <= 120

    def test_concurrent_increments(self, store: RedisCounterStore) -> None:
        limiter = FixedWindowRateLimiter(store, clock=lambda: 1000)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(
                pool.map(lambda _: limiter.check_and_increment("k", 10, 60), range(20))
            )

        assert results.count(True) == 10
        assert store.increment("k", 60, 1000) == CounterRecord(1000, 21)
