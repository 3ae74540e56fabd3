"""FastAPI application factory for the payment, webhook and admin API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from onramp.exceptions import OnrampError, RateLimited
from onramp.logging import get_logger
from onramp.server.routes import admin, health, payments, positions, webhooks

logger = get_logger(__name__)


async def onramp_error_handler(request: Request, exc: OnrampError) -> JSONResponse:
    """Render an OnrampError as ``{success: false, error: {...}}``."""
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.http_status >= 500:
        logger.warning(
            "request_failed",
            path=request.url.path,
            error_code=exc.code,
            status=exc.http_status,
        )
    return JSONResponse(
        status_code=exc.http_status,
        content={"success": False, "error": exc.to_dict()},
        headers=headers,
    )


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to wire components onto ``app.state``.

    Returns:
        Configured FastAPI application with error handling and routes.
    """
    app = FastAPI(title="Card Onramp Executor", lifespan=lifespan)

    app.add_exception_handler(OnrampError, onramp_error_handler)

    app.include_router(health.router)
    app.include_router(payments.router, prefix="/api")
    app.include_router(webhooks.router, prefix="/api")
    app.include_router(positions.router, prefix="/api")
    app.include_router(admin.router, prefix="/api/admin")

    return app
