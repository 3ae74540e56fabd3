"""JSON-RPC chain client built on web3's AsyncWeb3."""

from collections.abc import Awaitable
from typing import Any, TypeVar

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3

from onramp.chain import contracts
from onramp.chain.client import ChainClient
from onramp.chain.errors import classify_chain_error
from onramp.config import ChainSettings
from onramp.logging import get_logger
from onramp.models import TxReceipt

logger = get_logger(__name__)

T = TypeVar("T")


class Web3ChainClient(ChainClient):
    """ChainClient over HTTP JSON-RPC.

    Args:
        settings: RPC URL, chain id and timeouts.
    """

    def __init__(self, settings: ChainSettings) -> None:
        self._settings = settings
        self._w3 = AsyncWeb3(
            AsyncHTTPProvider(
                settings.rpc_url,
                request_kwargs={
                    "timeout": aiohttp.ClientTimeout(total=settings.rpc_timeout_seconds)
                },
            )
        )

    async def _rpc(self, op: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except Exception as e:
            error = classify_chain_error(e)
            logger.warning(
                "chain_rpc_failed",
                op=op,
                error_type=type(error).__name__,
                error=str(e),
            )
            raise error from e

    async def get_native_balance(self, address: str) -> int:
        return int(
            await self._rpc("get_balance", self._w3.eth.get_balance(contracts.checksum(address)))
        )

    async def _call_uint(self, op: str, to: str, data: str) -> int:
        result = await self._rpc(
            op, self._w3.eth.call({"to": contracts.checksum(to), "data": data})
        )
        return contracts.decode_uint(bytes(result))

    async def get_token_balance(self, token: str, owner: str) -> int:
        return await self._call_uint("balance_of", token, contracts.erc20_balance_of(owner))

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return await self._call_uint(
            "allowance", token, contracts.erc20_allowance(owner, spender)
        )

    async def get_transaction_count(self, address: str) -> int:
        return int(
            await self._rpc(
                "get_transaction_count",
                self._w3.eth.get_transaction_count(contracts.checksum(address), "pending"),
            )
        )

    async def get_gas_price(self) -> int:
        return int(await self._rpc("gas_price", self._w3.eth.gas_price))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return int(await self._rpc("estimate_gas", self._w3.eth.estimate_gas(tx)))

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        receipt = await self._rpc(
            "wait_for_receipt",
            self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=1.0),
        )
        return TxReceipt(
            tx_hash=tx_hash,
            succeeded=receipt["status"] == 1,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )
