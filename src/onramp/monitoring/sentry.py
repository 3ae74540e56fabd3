"""Sentry initialisation for error forwarding."""

from typing import Any

import sentry_sdk

from onramp.config import MonitoringSettings
from onramp.logging import get_logger

logger = get_logger(__name__)

_FILTERED_HEADERS = ("authorization", "x-square-hmacsha256-signature", "privy-app-id")


def before_send_hook(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """Drop noise and scrub credentials before an event leaves the process."""
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]
        if isinstance(exc_value, KeyboardInterrupt):
            return None

    request = event.get("request")
    if request:
        headers = request.get("headers") or {}
        for name in list(headers):
            if name.lower() in _FILTERED_HEADERS:
                headers[name] = "[Filtered]"
        if "data" in request:
            request["data"] = "[Filtered]"
    return event


def init_sentry(settings: MonitoringSettings) -> bool:
    """Initialise the Sentry SDK when a DSN is configured.

    Returns:
        True if Sentry is active.
    """
    if not settings.sentry_dsn:
        logger.info("sentry_disabled", reason="no_dsn")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=settings.traces_sample_rate,
        sample_rate=1.0,  # sampling happens in Monitor
        attach_stacktrace=True,
        send_default_pii=False,
        max_breadcrumbs=50,
        before_send=before_send_hook,
    )
    logger.info("sentry_initialized", environment=settings.environment)
    return True
