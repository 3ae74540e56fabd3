"""Tests for CustodialSigner.

Tests verify:
- The hub wallet resolves from configuration, users from the store
- Unregistered wallets raise WalletNotFound before anything is sent
- Transactions carry the pending nonce, buffered gas estimate and chain id
- A failed estimate falls back to the default gas limit
- A pinned nonce is reused and not re-fetched
- Transient send failures report the nonce that was used
- Gas prices above the cap are refused
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from onramp.config import AppSettings, ChainSettings
from onramp.custody.signer import CustodialSigner
from onramp.exceptions import ChainRpcTransient, WalletNotFound

USER_WALLET = "0x1111111111111111111111111111111111111111"
HUB_WALLET = "0x2222222222222222222222222222222222222222"
TARGET = "0x3333333333333333333333333333333333333333"


class TestWalletLookup:
    @pytest.mark.asyncio
    async def test_hub_from_config(self, signer: CustodialSigner) -> None:
        assert await signer.resolve_wallet_id(HUB_WALLET) == "hub-wallet-id"

    @pytest.mark.asyncio
    async def test_registered_user(self, signer: CustodialSigner) -> None:
        await signer.register_wallet("0xABCDEFabcdefABCDEFabcdefABCDEFabcdefABCD", "user-wallet-id")
        assert (
            await signer.resolve_wallet_id("0xabcdefabcdefabcdefabcdefabcdefabcdefabcd")
            == "user-wallet-id"
        )

    @pytest.mark.asyncio
    async def test_unregistered(self, signer: CustodialSigner, mock_custody: AsyncMock) -> None:
        with pytest.raises(WalletNotFound):
            await signer.sign_and_send(USER_WALLET, TARGET, data="0x")
        mock_custody.send_transaction.assert_not_called()


class TestSignAndSend:
    @pytest.mark.asyncio
    async def test_assembles_transaction(
        self, signer: CustodialSigner, mock_custody: AsyncMock, mock_chain: AsyncMock
    ) -> None:
        tx_hash = await signer.sign_and_send(HUB_WALLET, TARGET, data="0xabcd", value=5)

        assert tx_hash.startswith("0x")
        wallet_id, tx, chain_id = mock_custody.send_transaction.call_args.args
        assert wallet_id == "hub-wallet-id"
        assert chain_id == 43114
        assert tx["nonce"] == 7
        assert tx["gas"] == 120_000
        assert tx["gasPrice"] == 25 * 10**9
        assert tx["value"] == 5
        assert tx["data"] == "0xabcd"
        assert tx["to"] == "0x3333333333333333333333333333333333333333"

    @pytest.mark.asyncio
    async def test_estimate_failure_uses_default(
        self, signer: CustodialSigner, mock_custody: AsyncMock, mock_chain: AsyncMock
    ) -> None:
        mock_chain.estimate_gas.side_effect = ChainRpcTransient(raw="timeout")

        await signer.sign_and_send(HUB_WALLET, TARGET)

        tx = mock_custody.send_transaction.call_args.args[1]
        assert tx["gas"] == 500_000

    @pytest.mark.asyncio
    async def test_pinned_nonce(
        self, signer: CustodialSigner, mock_custody: AsyncMock, mock_chain: AsyncMock
    ) -> None:
        await signer.sign_and_send(HUB_WALLET, TARGET, nonce=3)

        mock_chain.get_transaction_count.assert_not_called()
        assert mock_custody.send_transaction.call_args.args[1]["nonce"] == 3

    @pytest.mark.asyncio
    async def test_transient_send_reports_nonce(
        self, signer: CustodialSigner, mock_custody: AsyncMock
    ) -> None:
        mock_custody.send_transaction.side_effect = ChainRpcTransient(raw="custody HTTP 503")

        with pytest.raises(ChainRpcTransient) as exc_info:
            await signer.sign_and_send(HUB_WALLET, TARGET)
        assert exc_info.value.details["nonce"] == 7

    @pytest.mark.asyncio
    async def test_gas_price_cap(
        self,
        settings: AppSettings,
        mock_chain: AsyncMock,
        mock_custody: AsyncMock,
        store,
    ) -> None:
        capped = ChainSettings(max_gas_price_gwei=Decimal("10"))
        signer = CustodialSigner(mock_chain, mock_custody, store, capped, settings.custody)

        with pytest.raises(ChainRpcTransient):
            await signer.sign_and_send(HUB_WALLET, TARGET)
        mock_custody.send_transaction.assert_not_called()
