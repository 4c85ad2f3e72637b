"""Shared fixtures for integration tests requiring live infrastructure."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Generator

import pytest
import redis
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from credit_gate.config import get_settings
from credit_gate.storage.orm import Base, Calculator

# ── Engine ─────────────────────────────────────────────────────────


@pytest.fixture()
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an async engine from settings and ensure the table exists."""
    engine = create_async_engine(
        get_settings().database_url,
        pool_size=2,
        max_overflow=0,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(
    async_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Committed seed data ────────────────────────────────────────────


@pytest.fixture()
def cid_prefix() -> str:
    """Unique client id prefix so parallel runs do not collide."""
    return f"it-{uuid.uuid4().hex[:8]}-"


@pytest.fixture()
async def seed_storefronts(
    session_factory: async_sessionmaker[AsyncSession],
    cid_prefix: str,
) -> AsyncGenerator[dict[str, str]]:
    """Commit one active, one inactive and one foreign-type storefront.

    Rows are deleted after the test.
    """
    cids = {
        "active": f"{cid_prefix}active",
        "inactive": f"{cid_prefix}inactive",
        "other_type": f"{cid_prefix}other",
    }
    async with session_factory() as session:
        session.add_all(
            [
                Calculator(
                    name="shop.myshopify.com",
                    unicid=cids["active"],
                    type=13,
                    dsk_status=1,
                ),
                Calculator(
                    name="closed.bg",
                    unicid=cids["inactive"],
                    type=13,
                    dsk_status=0,
                ),
                Calculator(
                    name="other.bg",
                    unicid=cids["other_type"],
                    type=7,
                    dsk_status=1,
                ),
            ]
        )
        await session.commit()

    yield cids

    async with session_factory() as session:
        await session.execute(
            delete(Calculator).where(Calculator.unicid.startswith(cid_prefix))
        )
        await session.commit()


# ── Redis ──────────────────────────────────────────────────────────


@pytest.fixture()
def redis_client() -> Generator[redis.Redis]:
    client = redis.Redis.from_url(get_settings().redis_url)
    yield client
    client.close()
