"""HTTP middleware: request logging and iframe framing policy."""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 64

RESTRICTIVE_FRAME_HEADERS: tuple[str, ...] = (
    "Content-Security-Policy",
    "X-Frame-Options",
    "X-Frame-Options-SAMEORIGIN",
)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with method, path, status code, and latency.

    Binds a ``request_id`` (the caller's ``X-Request-ID`` or a fresh
    one) into the structlog context for the lifetime of the request and
    echoes it on the response.
    """

    SKIP_PATHS: frozenset[str] = frozenset(
        {"/health", "/docs", "/openapi.json", "/redoc"}
    )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request and log timing information."""
        request_id = (
            request.headers.get(REQUEST_ID_HEADER, "")[:MAX_REQUEST_ID_LENGTH]
            or uuid.uuid4().hex
        )
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await self._timed(request, call_next)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    async def _timed(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = int((time.perf_counter() - start) * 1000)

        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        return response


class FramePolicyMiddleware(BaseHTTPMiddleware):
    """Allow the widget to be embedded by any storefront.

    Strips restrictive framing headers set further down the stack and
    asserts a permissive ``frame-ancestors`` policy on every response,
    including the 500 produced for an unhandled fault.
    """

    def __init__(self, app: ASGIApp, frame_ancestors: str = "*") -> None:
        super().__init__(app)
        self.frame_ancestors = frame_ancestors

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("unhandled_exception", path=request.url.path)
            response = JSONResponse(
                status_code=500,
                content={"detail": "Internal server error"},
            )
        self.apply(response)
        return response

    def apply(self, response: Response) -> None:
        for name in RESTRICTIVE_FRAME_HEADERS:
            if name in response.headers:
                del response.headers[name]
        response.headers["Content-Security-Policy"] = (
            f"frame-ancestors {self.frame_ancestors}"
        )
        response.headers["X-Frame-Options"] = "ALLOWALL"
