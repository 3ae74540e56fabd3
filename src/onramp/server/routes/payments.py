"""Card payment intake endpoint."""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from onramp.exceptions import ValidationError

log = structlog.get_logger(__name__)

router = APIRouter()


def client_ip(request: Request) -> str:
    """Caller identity for rate limiting.

    Behind a proxy the first X-Forwarded-For hop is the client.
    """
    if request.app.state.settings.server.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client is not None:
        return request.client.host
    return "unknown"


@router.post("/payments")
async def process_payment(request: Request) -> JSONResponse:
    """Charge a card and, once the charge completes, execute the deposit."""
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError as e:
        raise ValidationError(["Request body must be valid JSON"]) from e

    result = await request.app.state.intake.process(body, client_ip(request))
    return JSONResponse(content=result)
