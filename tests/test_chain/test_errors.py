"""Tests for chain error classification.

Tests verify:
- Known revert texts map to their reason and tailored user message
- Unknown reverts fall back to the generic message
- Gas, nonce and transient messages map to their exception types
- web3/aiohttp exceptions are classified by type
"""

import asyncio

import aiohttp
import pytest
from web3.exceptions import ContractLogicError

from onramp.chain.errors import (
    GENERIC_REVERT_MESSAGE,
    RevertReason,
    classify_chain_error,
    classify_error_message,
    classify_revert,
    match_revert_reason,
)
from onramp.exceptions import (
    ChainRpcTransient,
    ContractRevert,
    ExecutionError,
    InsufficientGas,
    NonceConflict,
)


class TestRevertReasons:
    def test_reserve_paused_message(self) -> None:
        error = classify_revert("execution reverted: RESERVE_PAUSED")

        assert error.reason == "RESERVE_PAUSED"
        assert error.user_message == "Aave reserve is paused. Supply is temporarily disabled."

    @pytest.mark.parametrize(
        "message,reason",
        [
            ("reserve is frozen", RevertReason.RESERVE_FROZEN),
            ("Reserve inactive", RevertReason.RESERVE_INACTIVE),
            ("ERC20: transfer amount exceeds balance", RevertReason.TRANSFER_FAILED),
            ("insufficient liquidity to borrow", RevertReason.INSUFFICIENT_LIQUIDITY),
            ("zero amount not allowed", RevertReason.INVALID_AMOUNT),
            ("health factor below threshold", RevertReason.HEALTH_FACTOR_LOW),
            ("collateral disabled for asset", RevertReason.COLLATERAL_DISABLED),
        ],
    )
    def test_patterns(self, message: str, reason: RevertReason) -> None:
        assert match_revert_reason(message) == reason

    def test_unknown_revert_is_generic(self) -> None:
        error = classify_revert("execution reverted: 0x1234")
        assert error.reason == "UNKNOWN"
        assert error.user_message == GENERIC_REVERT_MESSAGE

    def test_reason_without_tailored_message(self) -> None:
        error = classify_revert("health factor too low")
        assert error.user_message == "Contract revert: HEALTH_FACTOR_LOW"


class TestClassifyMessage:
    def test_insufficient_gas(self) -> None:
        error = classify_error_message("insufficient funds for gas * price + value")
        assert isinstance(error, InsufficientGas)

    def test_revert(self) -> None:
        assert isinstance(classify_error_message("execution reverted"), ContractRevert)

    def test_nonce(self) -> None:
        error = classify_error_message("nonce too low: next nonce 8, tx nonce 7")
        assert isinstance(error, NonceConflict)
        assert error.retryable is True

    def test_transient(self) -> None:
        assert type(classify_error_message("429 Too Many Requests")) is ChainRpcTransient

    def test_other(self) -> None:
        error = classify_error_message("something odd")
        assert type(error) is ExecutionError
        assert error.details["raw"] == "something odd"


class TestClassifyException:
    def test_contract_logic_error(self) -> None:
        error = classify_chain_error(ContractLogicError("execution reverted: reserve paused"))
        assert isinstance(error, ContractRevert)
        assert error.reason == "RESERVE_PAUSED"

    def test_timeouts_and_connection(self) -> None:
        assert isinstance(classify_chain_error(asyncio.TimeoutError()), ChainRpcTransient)
        assert isinstance(
            classify_chain_error(aiohttp.ClientConnectionError("reset")), ChainRpcTransient
        )

    def test_execution_error_passthrough(self) -> None:
        original = InsufficientGas()
        assert classify_chain_error(original) is original
