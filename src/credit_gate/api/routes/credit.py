"""Buy-on-credit widget endpoint."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException

from credit_gate.api.deps import get_gate, get_settings
from credit_gate.config import Settings
from credit_gate.factory import Gate
from credit_gate.security.pipeline import (
    FORM_CONTENT_TYPES,
    Decision,
    OrderFields,
    RejectReason,
    RequestContext,
)

logger = structlog.get_logger()

router = APIRouter(tags=["credit"])

_get_gate = Depends(get_gate)
_get_settings = Depends(get_settings)

# Every method is routed here so the pipeline, not the router, answers 405.
ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def client_ip(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Resolve the caller address, optionally from the first proxy hop."""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",", maxsplit=1)[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else ""


async def read_form_fields(request: Request) -> dict[str, str]:
    """Read text form fields.

    Bodies that are not form-encoded, and form bodies the parser rejects
    (broken multipart, oversized parts), read as an empty form.
    """
    if request.method.upper() != "POST":
        return {}
    content_type = request.headers.get("content-type", "").lower()
    if not any(ct in content_type for ct in FORM_CONTENT_TYPES):
        return {}
    try:
        form = await request.form()
    except (HTTPException, MultiPartException) as exc:
        logger.info("credit_form_unreadable", error=type(exc).__name__)
        return {}
    return {key: value for key, value in form.items() if isinstance(value, str)}


def build_context(
    request: Request,
    form: dict[str, str],
    *,
    trust_forwarded_for: bool = False,
) -> RequestContext:
    server = request.scope.get("server")
    headers = request.headers
    return RequestContext(
        method=request.method,
        is_secure=request.url.scheme == "https",
        forwarded_proto=headers.get("x-forwarded-proto", ""),
        server_port=server[1] if server else None,
        content_type=headers.get("content-type", ""),
        origin=headers.get("origin", ""),
        referer=headers.get("referer", ""),
        user_agent=headers.get("user-agent", ""),
        client_ip=client_ip(request, trust_forwarded_for=trust_forwarded_for),
        fields=OrderFields.from_form(form),
    )


def rejection_response(decision: Decision) -> Response:
    return PlainTextResponse(
        decision.detail,
        status_code=decision.status_code,
        headers=decision.headers,
    )


def order_payload(fields: OrderFields, storefront_name: str) -> dict[str, Any]:
    return {
        "status": "accepted",
        "cid": fields.cid,
        "storefront": storefront_name,
        "shop_domain": fields.shop_domain,
        "product": {
            "id": fields.product_id,
            "title": fields.product_title,
            "price": fields.product_price,
            "variant_id": fields.product_variant_id,
        },
    }


@router.api_route("/credit", methods=ROUTED_METHODS)
async def credit_request(
    request: Request,
    gate: Gate = _get_gate,
    settings: Settings = _get_settings,
) -> Response:
    """Admit a widget request and bind it to a registered storefront.

    Header checks run before the body is read. The rate limit and field
    checks run in a worker thread because the file counter store blocks
    on ``flock``.
    """
    ctx = build_context(request, {}, trust_forwarded_for=settings.trust_forwarded_for)
    decision = gate.pipeline.check_headers(ctx)
    if not decision.allowed:
        return rejection_response(decision)

    form = await read_form_fields(request)
    ctx = replace(ctx, fields=OrderFields.from_form(form))
    decision = await asyncio.to_thread(gate.pipeline.check_body, ctx)
    if not decision.allowed:
        return rejection_response(decision)

    fields = ctx.fields
    result = await gate.validator.validate(
        fields.cid, fields.shop_domain, fields.shop_permanent_domain
    )
    if not result.ok or result.storefront is None:
        logger.info(
            "admission_rejected",
            reason=str(RejectReason.STOREFRONT_MISMATCH),
            status_code=403,
            client_ip=ctx.client_ip,
        )
        detail = "Invalid storefront"
        if result.detail:
            detail = f"{detail}: {result.detail}"
        return PlainTextResponse(detail, status_code=403)

    logger.info(
        "credit_request_accepted",
        cid=fields.cid,
        product_id=fields.product_id,
        rule=str(result.rule),
    )
    return JSONResponse(order_payload(fields, result.storefront.name))
