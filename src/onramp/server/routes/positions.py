"""Read-only position lookups for the frontend."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from onramp.exceptions import ValidationError
from onramp.intake.validation import WALLET_RE
from onramp.models import Position

router = APIRouter()

# Never returned by the public API
_PRIVATE_FIELDS = ("user_email",)


def _public_view(position: Position) -> dict[str, Any]:
    data = position.to_dict()
    for name in _PRIVATE_FIELDS:
        data.pop(name, None)
    return data


@router.get("/positions/{payment_id}")
async def get_position(payment_id: str, request: Request) -> JSONResponse:
    position = await request.app.state.ledger.get_by_internal_id(payment_id)
    if position is None:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": {"code": "not_found", "message": "Position not found."},
            },
        )
    return JSONResponse(content={"success": True, "position": _public_view(position)})


@router.get("/wallets/{address}/positions")
async def get_wallet_positions(address: str, request: Request) -> JSONResponse:
    """All positions for a wallet, newest first."""
    if not WALLET_RE.match(address):
        raise ValidationError(["wallet address must be a 0x-prefixed 40 hex character address"])
    positions = await request.app.state.ledger.list_wallet_positions(address)
    return JSONResponse(
        content={
            "success": True,
            "wallet_address": address.lower(),
            "positions": [_public_view(p) for p in positions],
        }
    )
