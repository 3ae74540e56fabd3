"""Rate limiting, operation metrics and error reporting."""

from onramp.monitoring.rate_limiter import RateLimiter
from onramp.monitoring.sentry import init_sentry
from onramp.monitoring.tracker import ErrorCategory, ErrorReport, Monitor, Severity

__all__ = [
    "ErrorCategory",
    "ErrorReport",
    "Monitor",
    "RateLimiter",
    "Severity",
    "init_sentry",
]
