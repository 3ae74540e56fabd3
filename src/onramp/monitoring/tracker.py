"""Operation monitoring and structured error reports.

Monitor wraps externally reachable operations, recording duration and
status counters in the shared store and turning exceptions into sampled,
redacted ErrorReports that are kept in a capped list and forwarded to
Sentry when it is enabled.

Nothing in this module may fail the wrapped operation: store or Sentry
failures are logged at debug level and dropped.
"""

from __future__ import annotations

import json
import random
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

import sentry_sdk

from onramp.config import MonitoringSettings
from onramp.exceptions import (
    ChainRpcTransient,
    DuplicateRequest,
    ExecutionError,
    GatewayError,
    GatewayTimeout,
    GatewayUnavailable,
    InsufficientHubBalance,
    MappingMissing,
    OnrampError,
    RateLimited,
    SignatureInvalid,
    StoreUnavailable,
    ValidationError,
    WalletNotFound,
)
from onramp.logging import get_logger
from onramp.store import keys
from onramp.store.base import KeyValueStore

logger = get_logger(__name__)

REDACTED = "[REDACTED]"

SENSITIVE_CONTEXT_KEYS = frozenset(
    {
        "source_id",
        "token",
        "access_token",
        "card",
        "card_number",
        "cvv",
        "email",
        "user_email",
        "wallet_address",
        "private_key",
        "secret",
        "password",
        "authorization",
        "signature",
    }
)


class ErrorCategory(str, Enum):
    PAYMENT = "payment"
    LEVERAGED = "leveraged"
    AUTH = "auth"
    INFRASTRUCTURE = "infrastructure"
    USER_ERROR = "user_error"
    API = "api"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorReport:
    """A redacted, categorised error record."""

    error_id: str
    category: ErrorCategory
    severity: Severity
    endpoint: str
    error_type: str
    message: str
    code: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["severity"] = self.severity.value
        return data


def redact(value: Any) -> Any:
    """Recursively replace sensitive keys in dicts and lists."""
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_CONTEXT_KEYS else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def categorize(exc: BaseException, endpoint: str) -> ErrorCategory:
    """Assign a category from the exception type, then the endpoint name."""
    if isinstance(exc, (ValidationError, RateLimited, DuplicateRequest)):
        return ErrorCategory.USER_ERROR
    if isinstance(exc, (SignatureInvalid, WalletNotFound)):
        return ErrorCategory.AUTH
    if isinstance(
        exc, (StoreUnavailable, ChainRpcTransient, GatewayTimeout, GatewayUnavailable)
    ):
        return ErrorCategory.INFRASTRUCTURE
    if isinstance(exc, (GatewayError, MappingMissing)):
        return ErrorCategory.PAYMENT

    name = endpoint.lower()
    if "leveraged" in name or "order" in name:
        return ErrorCategory.LEVERAGED
    if "payment" in name or "webhook" in name:
        return ErrorCategory.PAYMENT
    if "wallet" in name or "auth" in name:
        return ErrorCategory.AUTH
    return ErrorCategory.API


def severity_for(exc: BaseException, category: ErrorCategory) -> Severity:
    if isinstance(exc, (InsufficientHubBalance, MappingMissing)):
        return Severity.CRITICAL
    if category == ErrorCategory.USER_ERROR:
        return Severity.LOW
    if category == ErrorCategory.INFRASTRUCTURE:
        return Severity.MEDIUM
    if isinstance(exc, OnrampError) and not isinstance(exc, ExecutionError):
        return Severity.MEDIUM
    return Severity.HIGH


class Monitor:
    """Records operation metrics and error reports.

    Args:
        store: Shared key-value store for counters, samples and reports.
        settings: Sample rate, retention and Sentry toggle.
        sentry_enabled: Forward reports to Sentry (set after init_sentry).
        rng: Random source in [0, 1) for error sampling.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: MonitoringSettings,
        sentry_enabled: bool = False,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._store = store
        self._settings = settings
        self._sentry_enabled = sentry_enabled
        self._rng = rng

    @asynccontextmanager
    async def track(self, endpoint: str, **context: Any) -> AsyncIterator[None]:
        """Time the wrapped block and report any exception it raises.

        The exception is re-raised unchanged.
        """
        started = time.perf_counter()
        status = "success"
        try:
            yield
        except Exception as exc:
            status = "rejected" if _is_client_error(exc) else "error"
            await self.report_error(exc, endpoint, context)
            raise
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            await self.record(endpoint, status, duration_ms)

    async def record(self, endpoint: str, status: str, duration_ms: float) -> None:
        """Increment the status counter and append a duration sample."""
        try:
            counter_key = keys.metrics_counter(endpoint, status)
            await self._store.incr(counter_key)
            await self._store.expire(counter_key, self._settings.metrics_ttl_seconds)

            samples_key = keys.metrics_samples(endpoint)
            sample = {"ts": time.time(), "status": status, "duration_ms": round(duration_ms, 2)}
            await self._store.lpush(samples_key, json.dumps(sample))
            await self._store.ltrim(samples_key, 0, self._settings.max_samples_per_endpoint - 1)
            await self._store.expire(samples_key, self._settings.metrics_ttl_seconds)
        except Exception as e:
            logger.debug("monitoring_record_failed", endpoint=endpoint, error=str(e))

    async def report_error(
        self,
        exc: BaseException,
        endpoint: str,
        context: dict[str, Any] | None = None,
    ) -> ErrorReport | None:
        """Build, sample and persist an ErrorReport for ``exc``.

        Critical reports bypass sampling.

        Returns:
            The stored report, or None if it was sampled out.
        """
        try:
            category = categorize(exc, endpoint)
            severity = severity_for(exc, category)
            if severity != Severity.CRITICAL and self._rng() >= self._settings.error_sample_rate:
                return None

            report = ErrorReport(
                error_id=f"err_{uuid4().hex[:12]}",
                category=category,
                severity=severity,
                endpoint=endpoint,
                error_type=type(exc).__name__,
                message=str(exc),
                code=getattr(exc, "code", None),
                context=redact(context or {}),
            )
            log = logger.error if severity in (Severity.HIGH, Severity.CRITICAL) else logger.warning
            log(
                "error_reported",
                error_id=report.error_id,
                category=category.value,
                severity=severity.value,
                endpoint=endpoint,
                error_type=report.error_type,
                error_message=report.message,
            )

            await self._store.lpush(keys.ERROR_REPORTS, json.dumps(report.to_dict()))
            await self._store.ltrim(keys.ERROR_REPORTS, 0, self._settings.max_error_reports - 1)

            if self._sentry_enabled and category != ErrorCategory.USER_ERROR:
                sentry_sdk.capture_exception(
                    exc,
                    tags={"category": category.value, "endpoint": endpoint},
                    extras=report.context,
                )
            return report
        except Exception as e:
            logger.debug("monitoring_report_failed", endpoint=endpoint, error=str(e))
            return None

    async def alert(self, message: str, **context: Any) -> None:
        """Raise a critical operator alert (hub balance, unmatched payments)."""
        safe_context = redact(context)
        logger.critical("operator_alert", alert=message, **safe_context)
        try:
            entry = {"ts": time.time(), "message": message, "context": safe_context}
            await self._store.lpush(keys.ALERTS, json.dumps(entry))
            await self._store.ltrim(keys.ALERTS, 0, self._settings.max_error_reports - 1)
            if self._sentry_enabled:
                sentry_sdk.capture_message(message, level="fatal", extras=safe_context)
        except Exception as e:
            logger.debug("monitoring_alert_failed", error=str(e))

    async def recent_errors(self, limit: int = 50) -> list[dict[str, Any]]:
        raw = await self._store.lrange(keys.ERROR_REPORTS, 0, limit - 1)
        return [json.loads(item) for item in raw]

    async def recent_alerts(self, limit: int = 50) -> list[dict[str, Any]]:
        raw = await self._store.lrange(keys.ALERTS, 0, limit - 1)
        return [json.loads(item) for item in raw]


def _is_client_error(exc: BaseException) -> bool:
    return isinstance(exc, OnrampError) and 400 <= exc.http_status < 500
