"""Classification of chain and signing-service failures.

Raw errors from RPC nodes and the custody service arrive as free-form text.
This module maps them onto the execution exception taxonomy so the
orchestrator can decide between retry (ChainRpcTransient), fail fast
(ContractRevert, InsufficientGas) and alert (InsufficientHubBalance).
"""

import asyncio
import re
from enum import Enum

import aiohttp
from web3.exceptions import ContractLogicError, TimeExhausted

from onramp.exceptions import (
    ChainRpcTransient,
    ContractRevert,
    ExecutionError,
    InsufficientGas,
    NonceConflict,
)


class RevertReason(str, Enum):
    """Known lending-protocol revert causes."""

    RESERVE_PAUSED = "RESERVE_PAUSED"
    RESERVE_INACTIVE = "RESERVE_INACTIVE"
    RESERVE_FROZEN = "RESERVE_FROZEN"
    TRANSFER_FAILED = "TRANSFER_FAILED"
    INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    HEALTH_FACTOR_LOW = "HEALTH_FACTOR_LOW"
    COLLATERAL_DISABLED = "COLLATERAL_DISABLED"
    UNKNOWN = "UNKNOWN"


# First match wins
_REVERT_PATTERNS: list[tuple[RevertReason, re.Pattern[str]]] = [
    (RevertReason.RESERVE_PAUSED, re.compile(r"reserve.*paused|paused.*reserve", re.I)),
    (RevertReason.RESERVE_INACTIVE, re.compile(r"reserve.*inactive|inactive.*reserve", re.I)),
    (RevertReason.RESERVE_FROZEN, re.compile(r"reserve.*frozen|frozen.*reserve", re.I)),
    (
        RevertReason.TRANSFER_FAILED,
        re.compile(r"transfer.*failed|failed.*transfer|erc20.*transfer", re.I),
    ),
    (
        RevertReason.INSUFFICIENT_LIQUIDITY,
        re.compile(r"insufficient.*liquidity|liquidity.*insufficient", re.I),
    ),
    (
        RevertReason.INVALID_AMOUNT,
        re.compile(r"invalid.*amount|amount.*invalid|zero.*amount", re.I),
    ),
    (RevertReason.HEALTH_FACTOR_LOW, re.compile(r"health.*factor|ltv.*exceeded", re.I)),
    (
        RevertReason.COLLATERAL_DISABLED,
        re.compile(r"collateral.*disabled|disabled.*collateral", re.I),
    ),
]

_REVERT_MESSAGES: dict[RevertReason, str] = {
    RevertReason.RESERVE_PAUSED: "Aave reserve is paused. Supply is temporarily disabled.",
    RevertReason.RESERVE_INACTIVE: "Aave reserve is inactive or frozen. Please try again later.",
    RevertReason.RESERVE_FROZEN: "Aave reserve is inactive or frozen. Please try again later.",
    RevertReason.TRANSFER_FAILED: "Token transfer failed. Check your USDC balance and allowance.",
    RevertReason.INSUFFICIENT_LIQUIDITY: (
        "Insufficient liquidity in Aave pool. Please try a smaller amount."
    ),
    RevertReason.INVALID_AMOUNT: "Invalid amount. Please enter a valid amount greater than zero.",
}

GENERIC_REVERT_MESSAGE = "Transaction would fail on-chain (contract revert)"

_GAS_MARKERS = (
    "insufficient funds for gas",
    "insufficient funds for intrinsic transaction cost",
    "insufficient balance for transfer",
)
_REVERT_MARKERS = ("execution reverted", "revert")
_NONCE_MARKERS = (
    "nonce too low",
    "replacement transaction underpriced",
    "already known",
)
_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "429",
    "502",
    "503",
    "504",
    "connection",
    "header not found",
)


def match_revert_reason(message: str) -> RevertReason:
    """Return the first known revert reason mentioned in ``message``."""
    for reason, pattern in _REVERT_PATTERNS:
        if pattern.search(message):
            return reason
    return RevertReason.UNKNOWN


def classify_revert(message: str) -> ContractRevert:
    """Build a ContractRevert with a tailored user message for ``message``."""
    reason = match_revert_reason(message)
    if reason in _REVERT_MESSAGES:
        user_message = _REVERT_MESSAGES[reason]
    elif reason != RevertReason.UNKNOWN:
        user_message = f"Contract revert: {reason.value}"
    else:
        user_message = GENERIC_REVERT_MESSAGE
    return ContractRevert(user_message, reason=reason.value, raw=message)


def classify_error_message(message: str) -> ExecutionError:
    """Classify a free-form chain or signer error message."""
    lowered = message.lower()
    if any(marker in lowered for marker in _GAS_MARKERS) or (
        "insufficient funds" in lowered and "transaction" in lowered
    ):
        return InsufficientGas(raw=message)
    if any(marker in lowered for marker in _REVERT_MARKERS):
        return classify_revert(message)
    if any(marker in lowered for marker in _NONCE_MARKERS):
        return NonceConflict(raw=message)
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return ChainRpcTransient(raw=message)
    return ExecutionError(f"Blockchain error: {message}" if message else None, raw=message)


def classify_chain_error(exc: BaseException) -> ExecutionError:
    """Map an exception raised by web3/aiohttp to the execution taxonomy."""
    if isinstance(exc, ExecutionError):
        return exc
    if isinstance(exc, ContractLogicError):
        return classify_revert(str(exc))
    if isinstance(exc, (TimeExhausted, asyncio.TimeoutError, aiohttp.ClientError, ConnectionError)):
        return ChainRpcTransient(raw=str(exc) or type(exc).__name__)
    return classify_error_message(str(exc))
