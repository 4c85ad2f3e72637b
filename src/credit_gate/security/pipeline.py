"""Admission pipeline: ordered, short-circuiting request checks.

Cheap local checks run first; the rate limiter is the only check
with side effects. A rejection is a normal return value, never an
exception.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from credit_gate.security.bot import BotClassifier
    from credit_gate.security.geo import GeoResolver
    from credit_gate.security.rate_limiter import FixedWindowRateLimiter

logger = structlog.get_logger()

ALLOWED_METHOD = "POST"
HTTPS_PORT = 443
FORM_CONTENT_TYPES: tuple[str, ...] = (
    "application/x-www-form-urlencoded",
    "multipart/form-data",
)
REQUIRED_FIELDS: tuple[str, ...] = (
    "cid",
    "shop_domain",
    "shop_permanent_domain",
    "product_id",
)
NO_CID_KEY = "no-cid"


class RejectReason(StrEnum):
    METHOD_NOT_ALLOWED = "method_not_allowed"
    HTTPS_REQUIRED = "https_required"
    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"
    ORIGIN_REQUIRED = "origin_required"
    BOT_DETECTED = "bot_detected"
    GEO_BLOCKED = "geo_blocked"
    RATE_LIMITED = "rate_limited"
    STALE_TIMESTAMP = "stale_timestamp"
    MISSING_FIELDS = "missing_fields"
    STOREFRONT_MISMATCH = "storefront_mismatch"


def parse_timestamp(raw: str | None) -> int:
    """Parse the ``ts`` form field; anything unparsable is 0."""
    if raw is None:
        return 0
    try:
        return int(raw.strip())
    except ValueError:
        return 0


@dataclass(frozen=True)
class OrderFields:
    """Untrusted form fields posted by the widget."""

    cid: str = ""
    product_id: str = ""
    product_title: str = ""
    product_price: str = ""
    product_variant_id: str = ""
    shop_domain: str = ""
    shop_permanent_domain: str = ""
    ts: int = 0

    @classmethod
    def from_form(cls, form: Mapping[str, str]) -> OrderFields:
        return cls(
            cid=form.get("cid", ""),
            product_id=form.get("product_id", ""),
            product_title=form.get("product_title", ""),
            product_price=form.get("product_price", ""),
            product_variant_id=form.get("product_variant_id", ""),
            shop_domain=form.get("shop_domain", ""),
            shop_permanent_domain=form.get("shop_permanent_domain", ""),
            ts=parse_timestamp(form.get("ts")),
        )


@dataclass(frozen=True)
class RequestContext:
    """Everything the pipeline needs to know about one inbound request."""

    method: str
    is_secure: bool = False
    forwarded_proto: str = ""
    server_port: int | None = None
    content_type: str = ""
    origin: str = ""
    referer: str = ""
    user_agent: str = ""
    client_ip: str = ""
    fields: OrderFields = field(default_factory=OrderFields)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    status_code: int = 200
    reason: RejectReason | None = None
    detail: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    missing_fields: tuple[str, ...] = ()

    @classmethod
    def allow(cls) -> Decision:
        return cls(allowed=True)

    @classmethod
    def reject(
        cls,
        reason: RejectReason,
        status_code: int,
        detail: str,
        *,
        headers: dict[str, str] | None = None,
        missing_fields: tuple[str, ...] = (),
    ) -> Decision:
        return cls(
            allowed=False,
            status_code=status_code,
            reason=reason,
            detail=detail,
            headers=headers or {},
            missing_fields=missing_fields,
        )


@dataclass(frozen=True)
class AdmissionPolicy:
    """Limits and windows applied by the pipeline."""

    ip_limit: int = 30
    cid_limit: int = 120
    rate_window_seconds: int = 60
    retry_after_seconds: int = 60
    timestamp_window_seconds: int = 300
    trust_forwarded_proto: bool = True


Check = Callable[[RequestContext, int], Decision | None]


class AdmissionPipeline:
    """Runs every check in a fixed order; the first rejection wins.

    Quota is charged to both limiter keys whenever a request reaches the
    rate-limit step, even if a later step rejects it.
    """

    def __init__(
        self,
        *,
        bot_classifier: BotClassifier,
        geo_resolver: GeoResolver,
        rate_limiter: FixedWindowRateLimiter,
        policy: AdmissionPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._bot_classifier = bot_classifier
        self._geo_resolver = geo_resolver
        self._rate_limiter = rate_limiter
        self._policy = policy or AdmissionPolicy()
        self._clock = clock
        # Header checks need nothing from the body and never touch the
        # limiter; body checks run once the form has been parsed.
        self._header_checks: tuple[Check, ...] = (
            self._check_method,
            self._check_transport,
            self._check_content_type,
            self._check_origin,
            self._check_user_agent,
            self._check_geography,
        )
        self._body_checks: tuple[Check, ...] = (
            self._check_rate_limit,
            self._check_timestamp,
            self._check_required_fields,
        )

    @property
    def policy(self) -> AdmissionPolicy:
        return self._policy

    def admit(self, ctx: RequestContext, now: int | None = None) -> Decision:
        """Decide whether ``ctx`` may reach business logic."""
        if now is None:
            now = int(self._clock())
        decision = self.check_headers(ctx, now)
        if not decision.allowed:
            return decision
        return self.check_body(ctx, now)

    def check_headers(self, ctx: RequestContext, now: int | None = None) -> Decision:
        """Run the checks answerable before the request body is read.

        ``ctx.fields`` is ignored, so the caller can pass a context
        built from headers alone.
        """
        return self._run(self._header_checks, ctx, now)

    def check_body(self, ctx: RequestContext, now: int | None = None) -> Decision:
        """Charge the rate limiter, then validate the posted fields.

        Only meaningful after ``check_headers`` allowed the same request.
        """
        return self._run(self._body_checks, ctx, now)

    def _run(
        self,
        checks: tuple[Check, ...],
        ctx: RequestContext,
        now: int | None,
    ) -> Decision:
        if now is None:
            now = int(self._clock())
        for check in checks:
            decision = check(ctx, now)
            if decision is not None:
                logger.info(
                    "admission_rejected",
                    reason=str(decision.reason),
                    status_code=decision.status_code,
                    client_ip=ctx.client_ip,
                )
                return decision
        return Decision.allow()

    def _check_method(self, ctx: RequestContext, now: int) -> Decision | None:
        if ctx.method.upper() != ALLOWED_METHOD:
            return Decision.reject(
                RejectReason.METHOD_NOT_ALLOWED,
                405,
                "Method not allowed",
                headers={"Allow": ALLOWED_METHOD},
            )
        return None

    def _check_transport(self, ctx: RequestContext, now: int) -> Decision | None:
        if ctx.is_secure:
            return None
        if (
            self._policy.trust_forwarded_proto
            and ctx.forwarded_proto.strip().lower() == "https"
        ):
            return None
        if ctx.server_port == HTTPS_PORT:
            return None
        return Decision.reject(RejectReason.HTTPS_REQUIRED, 403, "HTTPS required")

    def _check_content_type(self, ctx: RequestContext, now: int) -> Decision | None:
        content_type = ctx.content_type.lower()
        if content_type and any(ct in content_type for ct in FORM_CONTENT_TYPES):
            return None
        return Decision.reject(
            RejectReason.UNSUPPORTED_MEDIA_TYPE, 415, "Unsupported Media Type"
        )

    def _check_origin(self, ctx: RequestContext, now: int) -> Decision | None:
        # Presence only; embedding sites are not allow-listed.
        if ctx.origin or ctx.referer:
            return None
        return Decision.reject(
            RejectReason.ORIGIN_REQUIRED, 403, "Origin or Referer header required"
        )

    def _check_user_agent(self, ctx: RequestContext, now: int) -> Decision | None:
        if self._bot_classifier.is_bot(ctx.user_agent):
            return Decision.reject(RejectReason.BOT_DETECTED, 403, "Access denied")
        return None

    def _check_geography(self, ctx: RequestContext, now: int) -> Decision | None:
        if self._geo_resolver.is_allowed_country(ctx.client_ip):
            return None
        return Decision.reject(RejectReason.GEO_BLOCKED, 403, "Access denied")

    def _check_rate_limit(self, ctx: RequestContext, now: int) -> Decision | None:
        policy = self._policy
        cid = ctx.fields.cid or NO_CID_KEY
        # Both keys are charged before either result is inspected.
        ip_ok = self._rate_limiter.check_and_increment(
            f"ip_{ctx.client_ip}", policy.ip_limit, policy.rate_window_seconds
        )
        cid_ok = self._rate_limiter.check_and_increment(
            f"cid_{cid}", policy.cid_limit, policy.rate_window_seconds
        )
        if ip_ok and cid_ok:
            return None
        return Decision.reject(
            RejectReason.RATE_LIMITED,
            429,
            "Too many requests",
            headers={"Retry-After": str(policy.retry_after_seconds)},
        )

    def _check_timestamp(self, ctx: RequestContext, now: int) -> Decision | None:
        ts = ctx.fields.ts
        if ts == 0 or abs(now - ts) > self._policy.timestamp_window_seconds:
            return Decision.reject(
                RejectReason.STALE_TIMESTAMP, 403, "Invalid or expired timestamp"
            )
        return None

    def _check_required_fields(
        self, ctx: RequestContext, now: int
    ) -> Decision | None:
        missing = tuple(
            name for name in REQUIRED_FIELDS if not getattr(ctx.fields, name)
        )
        if not missing:
            return None
        return Decision.reject(
            RejectReason.MISSING_FIELDS,
            400,
            f"Missing required fields: {', '.join(missing)}",
            missing_fields=missing,
        )
