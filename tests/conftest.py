"""Shared pytest fixtures.

Tests marked ``requires_db`` or ``requires_redis`` talk to live
infrastructure and are skipped unless explicitly enabled.
"""

import pytest

LIVE_BACKENDS: dict[str, tuple[str, str]] = {
    "requires_db": ("--run-db", "needs --run-db (live storefront registry)"),
    "requires_redis": ("--run-redis", "needs --run-redis (live counter store)"),
}


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-db",
        action="store_true",
        default=False,
        help="Run tests against a live PostgreSQL storefront registry",
    )
    parser.addoption(
        "--run-redis",
        action="store_true",
        default=False,
        help="Run tests against a live Redis rate-limit counter store",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    skips = {
        marker: pytest.mark.skip(reason=reason)
        for marker, (option, reason) in LIVE_BACKENDS.items()
        if not config.getoption(option)
    }
    for item in items:
        for marker, skip in skips.items():
            if marker in item.keywords:
                item.add_marker(skip)
