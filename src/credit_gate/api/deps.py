"""FastAPI dependency injection."""

from __future__ import annotations

from typing import cast

from fastapi import Request

from credit_gate.config import get_settings
from credit_gate.factory import Gate

__all__ = ["get_gate", "get_settings"]


async def get_gate(request: Request) -> Gate:
    """Retrieve the admission gate from app state.

    Initialized during lifespan startup.
    """
    return cast(Gate, request.app.state.gate)
