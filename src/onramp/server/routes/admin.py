"""Operator endpoints: custody wallet registration, failed payment listing,
execution resume, error feed.

All routes require ``Authorization: Bearer <SERVER_ADMIN_TOKEN>``. With no
token configured the admin API rejects every request.
"""

from __future__ import annotations

import hmac
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from onramp.exceptions import MappingMissing, Unauthorized
from onramp.ledger import PositionLedger
from onramp.models import Position

log = structlog.get_logger(__name__)


async def require_admin(request: Request) -> None:
    expected = request.app.state.settings.server.admin_token.get_secret_value()
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if (
        not expected
        or scheme.lower() != "bearer"
        or not hmac.compare_digest(token.encode(), expected.encode())
    ):
        raise Unauthorized()


router = APIRouter(dependencies=[Depends(require_admin)])


class WalletRegistration(BaseModel):
    """Custody mapping written when a user authenticates."""

    wallet_address: str = Field(pattern=r"^0x[a-fA-F0-9]{40}$")
    wallet_id: str = Field(min_length=1, max_length=128)


@router.post("/wallets")
async def register_wallet(body: WalletRegistration, request: Request) -> JSONResponse:
    await request.app.state.signer.register_wallet(body.wallet_address, body.wallet_id)
    return JSONResponse(
        content={"success": True, "wallet_address": body.wallet_address.lower()}
    )


@router.get("/payments/failed")
async def failed_payments(
    request: Request, stuck_after: int | None = Query(default=None, ge=0)
) -> JSONResponse:
    """Failed executions, and executions stuck in flight, that need a resume.

    ``stuck_after`` overrides EXECUTION_STUCK_AFTER_SECONDS for this listing.
    """
    ledger = request.app.state.ledger
    if stuck_after is None:
        stuck_after = request.app.state.settings.execution.stuck_after_seconds
    failed = await ledger.list_failed()
    stuck = await ledger.list_stuck(stuck_after)
    return JSONResponse(
        content={
            "failed": [await _operator_view(ledger, p) for p in failed],
            "stuck": [await _operator_view(ledger, p) for p in stuck],
        }
    )


async def _operator_view(ledger: PositionLedger, position: Position) -> dict[str, Any]:
    data = position.to_dict()
    claim = await ledger.get_claim(position.payment_id)
    data["claim"] = claim.to_dict() if claim is not None else None
    return data


@router.post("/payments/{payment_id}/resume")
async def resume_payment(payment_id: str, request: Request) -> JSONResponse:
    """Take over the execution claim and re-run a failed or stuck execution."""
    log.warning("operator_resume_requested", payment_id=payment_id)
    try:
        result = await request.app.state.orchestrator.resume(payment_id)
    except MappingMissing:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": {"code": "not_found", "message": "Position not found."},
            },
        )
    return JSONResponse(
        content={
            "success": result.success,
            "payment_id": payment_id,
            "status": result.status.value,
            "tx_hashes": result.tx_hashes,
            "error": result.error,
        }
    )


@router.get("/errors")
async def recent_errors(
    request: Request, limit: int = Query(default=50, ge=1, le=200)
) -> JSONResponse:
    monitor = request.app.state.monitor
    return JSONResponse(
        content={
            "errors": await monitor.recent_errors(limit),
            "alerts": await monitor.recent_alerts(limit),
        }
    )
