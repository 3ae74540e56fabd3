"""Custom exceptions for the card onramp service.

Every failure the service can surface lives here so intake, webhook,
orchestrator and server layers share one taxonomy. Each class carries a
stable ``code``, the HTTP status it maps to at the API edge, and a message
safe to show to the paying user.
"""

from __future__ import annotations

from typing import Any


class OnrampError(Exception):
    """Base exception for all onramp errors."""

    code: str = "internal_error"
    http_status: int = 500
    retryable: bool = False
    default_message: str = "An unexpected error occurred. Please try again."

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.user_message = message or self.default_message
        self.details = details
        super().__init__(self.user_message)

    def to_dict(self) -> dict[str, Any]:
        """Return the error body shape used by the API and the position record."""
        return {"code": self.code, "message": self.user_message}


# ---------------------------------------------------------------------------
# Intake / edge errors
# ---------------------------------------------------------------------------


class ValidationError(OnrampError):
    """Raised when a request body fails field validation."""

    code = "validation_error"
    http_status = 400
    default_message = "Invalid payment request."

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors) if errors else None)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.user_message, "errors": self.errors}


class RateLimited(OnrampError):
    """Raised when an identity exceeds its request budget for the window."""

    code = "rate_limited"
    http_status = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, reset_at: float, retry_after: int) -> None:
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__()

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.user_message,
            "reset_at": self.reset_at,
        }


class DuplicateRequest(OnrampError):
    """Raised when a client idempotency key was already used."""

    code = "duplicate_request"
    http_status = 409
    default_message = "This payment request was already submitted."

    def __init__(self, payment_id: str) -> None:
        self.payment_id = payment_id
        super().__init__()

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.user_message, "payment_id": self.payment_id}


class SignatureInvalid(OnrampError):
    """Raised when a webhook signature is missing or does not verify."""

    code = "invalid_signature"
    http_status = 401
    default_message = "Invalid webhook signature."


class StoreUnavailable(OnrampError):
    """Raised when the shared key-value store cannot be reached."""

    code = "store_unavailable"
    http_status = 503
    retryable = True
    default_message = "Service temporarily unavailable. Please try again shortly."


# ---------------------------------------------------------------------------
# Gateway errors
# ---------------------------------------------------------------------------


class GatewayError(OnrampError):
    """Raised when the payment gateway declines or rejects a charge."""

    code = "gateway_error"
    http_status = 402
    default_message = "Payment could not be processed."

    def __init__(self, gateway_code: str, message: str | None = None) -> None:
        self.gateway_code = gateway_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.user_message,
            "gateway_code": self.gateway_code,
        }


class GatewayTimeout(OnrampError):
    """Raised when the gateway does not answer within the configured timeout."""

    code = "gateway_timeout"
    http_status = 504
    retryable = True
    default_message = "Payment processor timed out. Please try again."


class GatewayUnavailable(OnrampError):
    """Raised on network failures talking to the gateway."""

    code = "gateway_unavailable"
    http_status = 503
    retryable = True
    default_message = "Payment processor is unavailable. Please try again shortly."


class GatewayMisconfigured(OnrampError):
    """Raised when gateway credentials are missing or rejected."""

    code = "gateway_misconfigured"
    http_status = 500
    default_message = "Payment service is not configured."


# ---------------------------------------------------------------------------
# Execution errors (recorded on the position, never surfaced as HTTP errors
# on the payment path)
# ---------------------------------------------------------------------------


class ExecutionError(OnrampError):
    """Base class for failures during on-chain execution."""

    code = "execution_error"
    default_message = "Deposit execution failed."


class WalletNotFound(ExecutionError):
    """Raised when no custody wallet is registered for an address."""

    code = "wallet_not_found"
    default_message = "Wallet is not registered. Please sign in again to link your wallet."


class InsufficientHubBalance(ExecutionError):
    """Raised when the hub wallet cannot cover a funding transfer."""

    code = "insufficient_hub_balance"
    default_message = "Deposit is delayed. Our team has been notified."


class InsufficientGas(ExecutionError):
    """Raised when a sender lacks native token to pay for gas."""

    code = "insufficient_gas"
    default_message = "Wallet does not have enough gas to complete the deposit."


class ChainRpcTransient(ExecutionError):
    """Raised on RPC timeouts, rate limits and connection failures."""

    code = "chain_rpc_transient"
    retryable = True
    default_message = "Blockchain network is busy. The deposit will be retried."


class NonceConflict(ChainRpcTransient):
    """Raised when the node rejects a transaction nonce as used or pending."""

    code = "nonce_conflict"


class ApprovalFailed(ExecutionError):
    """Raised when a token approval does not take effect."""

    code = "approval_failed"
    default_message = "Token approval failed."


class BelowProtocolMinimum(ExecutionError):
    """Raised when an amount is below a protocol's minimum position size."""

    code = "below_protocol_minimum"
    default_message = "Amount is below the minimum for this strategy."


class ContractRevert(ExecutionError):
    """Raised when a transaction reverts or would revert on-chain."""

    code = "contract_revert"
    default_message = "Transaction would fail on-chain (contract revert)"

    def __init__(
        self, message: str | None = None, reason: str = "UNKNOWN", raw: str = ""
    ) -> None:
        self.reason = reason
        self.raw = raw
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.user_message, "reason": self.reason}


class PositionExists(OnrampError):
    """Raised when creating a position for a payment id that already has one."""

    code = "position_exists"
    http_status = 409


class MappingMissing(OnrampError):
    """Raised when a gateway payment cannot be tied to an internal payment."""

    code = "mapping_missing"
    default_message = "Payment could not be matched to a deposit."


class Unauthorized(OnrampError):
    """Raised when an admin request lacks a valid bearer token."""

    code = "unauthorized"
    http_status = 401
    default_message = "Missing or invalid admin token."
