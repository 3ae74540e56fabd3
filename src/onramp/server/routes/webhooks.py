"""Gateway webhook endpoint.

Only POST is routed; any other method gets FastAPI's 405.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from onramp.exceptions import StoreUnavailable

log = structlog.get_logger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "x-square-hmacsha256-signature"


@router.post("/webhooks/square")
async def square_webhook(request: Request) -> JSONResponse:
    raw = await request.body()
    try:
        result = await request.app.state.reconciler.handle(
            raw, request.headers.get(SIGNATURE_HEADER)
        )
    except StoreUnavailable as e:
        # 500 makes the gateway redeliver once the store is back
        log.error("webhook_store_unavailable", error=str(e))
        return JSONResponse(
            status_code=500, content={"success": False, "error": e.to_dict()}
        )
    return JSONResponse(content=result)
