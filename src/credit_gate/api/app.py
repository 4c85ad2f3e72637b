"""FastAPI application with lifespan management."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from credit_gate.api.middleware import FramePolicyMiddleware, RequestLoggingMiddleware
from credit_gate.api.routes.credit import router as credit_router
from credit_gate.config import settings
from credit_gate.factory import create_gate
from credit_gate.logging_config import configure_logging
from credit_gate.security.rate_limiter import FixedWindowRateLimiter
from credit_gate.storage.database import async_session, engine

logger = structlog.get_logger()


async def _prune_loop(
    limiter: FixedWindowRateLimiter, interval: int, window_seconds: int
) -> None:
    """Periodically drop counter records idle for more than one interval."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(
                limiter.prune, interval, window_seconds=window_seconds
            )
            if removed:
                logger.debug("rate_limit_prune", records_removed=removed)
        except Exception:
            logger.exception("rate_limit_prune_error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application startup and shutdown.

    Startup:
        - Build the admission gate (pipeline, counter store, validator).
        - Start counter prune task.
    Shutdown:
        - Cancel prune task.
        - Close counter store and dispose database engine.
    """
    configure_logging(
        environment=str(settings.environment),
        log_level=settings.log_level,
        mask_client_ips=settings.log_mask_client_ips,
    )
    gate = create_gate(settings, async_session)
    app.state.gate = gate

    prune_task = asyncio.create_task(
        _prune_loop(
            gate.rate_limiter,
            settings.counter_prune_interval_seconds,
            settings.rate_limit_window_seconds,
        )
    )

    logger.info("app_started", environment=str(settings.environment))
    yield

    prune_task.cancel()
    gate.close()
    await engine.dispose()
    logger.info("app_stopped")


app = FastAPI(
    title="Credit Gate",
    description="Admission gate for the embedded buy-on-credit widget",
    version="0.1.0",
    lifespan=lifespan,
    debug=settings.is_dev,
)

app.add_middleware(RequestLoggingMiddleware)
# Added last so it wraps everything, including faults raised below it.
app.add_middleware(FramePolicyMiddleware, frame_ancestors=settings.frame_ancestors)


HEALTH_CHECK_TIMEOUT = 5.0


@app.get("/health")
async def health() -> JSONResponse:
    """Deep health check -- verifies registry connectivity."""
    checks: dict[str, str] = {}
    overall = "ok"

    try:
        async with async_session() as session:
            await asyncio.wait_for(
                session.execute(text("SELECT 1")),
                timeout=HEALTH_CHECK_TIMEOUT,
            )
        checks["db"] = "ok"
    except (TimeoutError, OperationalError, SQLAlchemyError) as e:
        logger.warning("health_check_db_error", error=type(e).__name__)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"
    except Exception as e:
        logger.error("health_check_db_unexpected", error=str(e), exc_info=True)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"

    status_code = 200 if overall == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": overall,
            "checks": checks,
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all for faults raised in the middleware layer itself.

    Route faults are already turned into a framed 500 by
    FramePolicyMiddleware and never reach this handler.
    """
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.include_router(credit_router)
