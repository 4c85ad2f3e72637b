"""SQL-backed storefront registry."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credit_gate.errors import RegistryUnavailableError
from credit_gate.storage.orm import Calculator
from credit_gate.storefronts.validator import Storefront


class SqlStorefrontRegistry:
    """Reads eligible storefronts from the ``calculators`` table.

    Only rows with the configured integration type and active status
    are candidates. The session factory is owned by the caller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        integration_type: int = 13,
        active_status: int = 1,
    ) -> None:
        self._session_factory = session_factory
        self._integration_type = integration_type
        self._active_status = active_status

    async def find_active(self, client_id: str) -> Storefront | None:
        """Fetch at most one eligible storefront for ``client_id``.

        Raises:
            RegistryUnavailableError: connection or query failure.
        """
        stmt = (
            select(Calculator)
            .where(
                Calculator.unicid == client_id,
                Calculator.type == self._integration_type,
                Calculator.dsk_status == self._active_status,
            )
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                row = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RegistryUnavailableError(
                f"Registry query failed: {type(exc).__name__}"
            ) from exc

        if row is None:
            return None
        return Storefront(
            name=row.name or "",
            client_id=row.unicid,
            integration_type=row.type,
            status=row.dsk_status,
        )
