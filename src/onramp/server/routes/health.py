"""Liveness endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    store_ok = await request.app.state.store.ping()
    return JSONResponse(
        status_code=200 if store_ok else 503,
        content={"status": "ok" if store_ok else "degraded", "store": store_ok},
    )
