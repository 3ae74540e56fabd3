"""Tests for StepRunner: retries, nonce pinning and step idempotency.

Tests verify:
- A recorded tx hash is re-confirmed, never re-broadcast
- A fresh broadcast is recorded on the ledger before confirmation
- Transient failures back off exponentially and give up after max_attempts
- A retry after an ambiguous broadcast reuses the same nonce
- A nonce conflict on a pinned nonce stops for manual review
- Reverted receipts raise ContractRevert
- Allowance checks skip, approve, or fail with ApprovalFailed
"""

from unittest.mock import AsyncMock

import pytest

from onramp.config import AppSettings, ExecutionSettings
from onramp.custody.signer import CustodialSigner
from onramp.exceptions import (
    ApprovalFailed,
    ChainRpcTransient,
    ContractRevert,
    ExecutionError,
    NonceConflict,
)
from onramp.execution.steps import StepRunner
from onramp.ledger import PositionLedger
from onramp.models import StepStatus, TxReceipt

HUB_WALLET = "0x2222222222222222222222222222222222222222"
USER_WALLET = "0x1111111111111111111111111111111111111111"
TOKEN = "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E"
SPENDER = "0x794a61358D6845594F94dc1DB02A252b5b4814aD"


class TestSendOnce:
    @pytest.mark.asyncio
    async def test_recorded_hash_not_rebroadcast(
        self,
        runner: StepRunner,
        ledger: PositionLedger,
        make_position,
        mock_custody: AsyncMock,
        mock_chain: AsyncMock,
    ) -> None:
        position = await ledger.create_position(make_position(funding_tx_hash="0xrecorded"))

        result = await runner.send_once(
            position, "fund_stablecoin", "funding_tx_hash", sender=HUB_WALLET, to=TOKEN
        )

        assert result.status == StepStatus.SKIPPED
        assert result.tx_hash == "0xrecorded"
        mock_custody.send_transaction.assert_not_called()
        mock_chain.wait_for_receipt.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hash_recorded_before_confirmation(
        self,
        runner: StepRunner,
        ledger: PositionLedger,
        make_position,
        mock_chain: AsyncMock,
    ) -> None:
        position = await ledger.create_position(make_position())
        seen: list[str | None] = []

        async def _receipt(tx_hash: str, timeout: float) -> TxReceipt:
            stored = await ledger.get_by_internal_id(position.payment_id)
            seen.append(stored.funding_tx_hash)
            return TxReceipt(tx_hash=tx_hash, succeeded=True)

        mock_chain.wait_for_receipt.side_effect = _receipt

        result = await runner.send_once(
            position, "fund_stablecoin", "funding_tx_hash", sender=HUB_WALLET, to=TOKEN
        )

        assert result.status == StepStatus.CONFIRMED
        assert seen == [result.tx_hash]
        assert position.funding_tx_hash == result.tx_hash

    @pytest.mark.asyncio
    async def test_reverted_receipt(
        self,
        runner: StepRunner,
        ledger: PositionLedger,
        make_position,
        mock_chain: AsyncMock,
    ) -> None:
        position = await ledger.create_position(make_position())
        mock_chain.wait_for_receipt.side_effect = None
        mock_chain.wait_for_receipt.return_value = TxReceipt(tx_hash="0x1", succeeded=False)

        with pytest.raises(ContractRevert):
            await runner.send_once(
                position, "fund_gas", "gas_tx_hash", sender=HUB_WALLET, to=USER_WALLET, value=1
            )
        stored = await ledger.get_by_internal_id(position.payment_id)
        assert stored.gas_tx_hash is not None


class TestRetry:
    @pytest.mark.asyncio
    async def test_exponential_backoff(
        self,
        ledger: PositionLedger,
        signer: CustodialSigner,
        mock_chain: AsyncMock,
        settings: AppSettings,
    ) -> None:
        delays: list[float] = []

        async def _sleep(delay: float) -> None:
            delays.append(delay)

        runner = StepRunner(
            ledger,
            signer,
            mock_chain,
            settings.chain,
            ExecutionSettings(max_attempts=3, retry_base_delay=1.0),
            sleep=_sleep,
        )
        operation = AsyncMock(
            side_effect=[ChainRpcTransient(raw="timeout"), ChainRpcTransient(raw="timeout"), 42]
        )

        assert await runner.retry("read", operation) == 42
        assert delays == [1.0, 2.0]
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up(self, runner: StepRunner) -> None:
        operation = AsyncMock(side_effect=ChainRpcTransient(raw="timeout"))
        with pytest.raises(ChainRpcTransient):
            await runner.retry("read", operation)
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_not_retried(self, runner: StepRunner) -> None:
        operation = AsyncMock(side_effect=ContractRevert())
        with pytest.raises(ContractRevert):
            await runner.retry("send", operation)
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_nonce_pinned_after_ambiguous_send(self, runner: StepRunner) -> None:
        nonces: list[int | None] = []

        async def _operation(nonce: int | None) -> str:
            nonces.append(nonce)
            if len(nonces) == 1:
                raise ChainRpcTransient(raw="custody HTTP 504", nonce=7)
            return "0xhash"

        assert await runner.retry("send", _operation) == "0xhash"
        assert nonces == [None, 7]

    @pytest.mark.asyncio
    async def test_conflict_on_pinned_nonce_needs_review(self, runner: StepRunner) -> None:
        operation = AsyncMock(
            side_effect=[
                ChainRpcTransient(raw="timeout", nonce=7),
                NonceConflict(raw="nonce too low"),
            ]
        )
        with pytest.raises(ExecutionError) as exc_info:
            await runner.retry("send", operation)

        assert not isinstance(exc_info.value, ChainRpcTransient)
        assert exc_info.value.details["nonce"] == 7


class TestEnsureAllowance:
    @pytest.mark.asyncio
    async def test_sufficient_allowance_skips(
        self,
        runner: StepRunner,
        ledger: PositionLedger,
        make_position,
        mock_custody: AsyncMock,
    ) -> None:
        position = await ledger.create_position(make_position())

        result = await runner.ensure_allowance(position, TOKEN, USER_WALLET, SPENDER, 50_000_000)

        assert result.status == StepStatus.SKIPPED
        mock_custody.send_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_approves_when_short(
        self,
        runner: StepRunner,
        ledger: PositionLedger,
        signer: CustodialSigner,
        make_position,
        mock_chain: AsyncMock,
        mock_custody: AsyncMock,
    ) -> None:
        await signer.register_wallet(USER_WALLET, "user-wallet-id")
        position = await ledger.create_position(make_position())
        mock_chain.get_allowance.side_effect = [0, 50_000_000]

        result = await runner.ensure_allowance(position, TOKEN, USER_WALLET, SPENDER, 50_000_000)

        assert result.status == StepStatus.CONFIRMED
        assert result.tx_hash is not None
        assert mock_custody.send_transaction.await_count == 1
        stored = await ledger.get_by_internal_id(position.payment_id)
        assert stored.approval_tx_hash == result.tx_hash

    @pytest.mark.asyncio
    async def test_approval_never_lands(
        self,
        runner: StepRunner,
        ledger: PositionLedger,
        signer: CustodialSigner,
        make_position,
        mock_chain: AsyncMock,
        mock_custody: AsyncMock,
    ) -> None:
        await signer.register_wallet(USER_WALLET, "user-wallet-id")
        position = await ledger.create_position(make_position())
        mock_chain.get_allowance.return_value = 0

        with pytest.raises(ApprovalFailed):
            await runner.ensure_allowance(position, TOKEN, USER_WALLET, SPENDER, 50_000_000)
        # One approval plus one retry
        assert mock_custody.send_transaction.await_count == 2
