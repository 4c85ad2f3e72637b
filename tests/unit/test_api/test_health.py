"""Tests for the health endpoint."""

from collections.abc import Generator
from contextlib import contextmanager
from unittest.mock import AsyncMock, patch

from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from credit_gate.api.app import app


@contextmanager
def mock_db(*, db_error: Exception | None = None) -> Generator[AsyncMock]:
    """Patch the session factory used by the health check.

    Args:
        db_error: If set, async_session __aenter__ raises this exception.
    """
    mock_db_session = AsyncMock()
    mock_db_session.execute = AsyncMock()

    with patch("credit_gate.api.app.async_session") as mock_session_factory:
        if db_error:
            mock_session_factory.return_value.__aenter__ = AsyncMock(
                side_effect=db_error
            )
        else:
            mock_session_factory.return_value.__aenter__ = AsyncMock(
                return_value=mock_db_session
            )
        mock_session_factory.return_value.__aexit__ = AsyncMock(return_value=False)
        yield mock_db_session


async def _get_health() -> tuple[int, dict, dict]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        response = await ac.get("/health")
    return response.status_code, response.json(), dict(response.headers)


class TestHealth:
    async def test_health_ok(self) -> None:
        """GET /health returns 200 when the registry database answers."""
        with mock_db() as session:
            status, data, _ = await _get_health()

        assert status == 200
        assert data["status"] == "ok"
        assert data["checks"]["db"] == "ok"
        assert "timestamp" in data
        session.execute.assert_awaited_once()

    async def test_health_db_timeout(self) -> None:
        with mock_db(db_error=TimeoutError("db timeout")):
            status, data, _ = await _get_health()

        assert status == 503
        assert data["status"] == "degraded"
        assert data["checks"]["db"] == "error: TimeoutError"

    async def test_health_db_operational_error(self) -> None:
        error = OperationalError("SELECT 1", {}, Exception("refused"))
        with mock_db(db_error=error):
            status, data, _ = await _get_health()

        assert status == 503
        assert data["checks"]["db"] == "error: OperationalError"

    async def test_health_unexpected_error(self) -> None:
        with mock_db(db_error=ValueError("weird")):
            status, data, _ = await _get_health()

        assert status == 503
        assert data["checks"]["db"] == "error: ValueError"

    async def test_health_is_framed(self) -> None:
        """Framing headers are applied to every route, not just /credit."""
        with mock_db():
            _, _, headers = await _get_health()

        assert headers["x-frame-options"] == "ALLOWALL"
