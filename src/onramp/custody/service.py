"""Custodial signing service clients.

The custody service holds user and hub keys. We hand it a fully assembled
transaction (nonce, gas, value, chain id) and it signs and broadcasts,
returning the transaction hash.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import aiohttp

from onramp.chain.errors import classify_error_message
from onramp.config import CustodySettings
from onramp.exceptions import ChainRpcTransient, ExecutionError, WalletNotFound
from onramp.logging import get_logger

logger = get_logger(__name__)


class CustodyService(ABC):
    """Abstract base class for a remote signer."""

    @abstractmethod
    async def send_transaction(
        self, wallet_id: str, tx: dict[str, Any], chain_id: int
    ) -> str:
        """Sign ``tx`` with the key behind ``wallet_id`` and broadcast it.

        Args:
            wallet_id: Custody-side wallet identifier.
            tx: Transaction fields (to, data, value, nonce, gas, gasPrice).
            chain_id: EVM chain id.

        Returns:
            Transaction hash (0x-prefixed hex).

        Raises:
            WalletNotFound: If the service does not know ``wallet_id``.
            ChainRpcTransient: On timeouts, rate limits and 5xx responses.
            ContractRevert: If the service reports the transaction would revert.
            InsufficientGas: If the wallet cannot pay for gas.
        """
        ...

    async def close(self) -> None:
        return None


class HttpCustodyService(CustodyService):
    """Server-wallet RPC API (``POST /v1/wallets/{id}/rpc``).

    Args:
        settings: API URL, app credentials and timeout.
    """

    def __init__(self, settings: CustodySettings) -> None:
        self._settings = settings
        self._timeout = aiohttp.ClientTimeout(total=settings.timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                auth=aiohttp.BasicAuth(
                    self._settings.app_id, self._settings.app_secret.get_secret_value()
                ),
                headers={"privy-app-id": self._settings.app_id},
            )
        return self._session

    async def send_transaction(
        self, wallet_id: str, tx: dict[str, Any], chain_id: int
    ) -> str:
        url = f"{self._settings.api_url.rstrip('/')}/v1/wallets/{wallet_id}/rpc"
        body = {
            "method": "eth_sendTransaction",
            "caip2": f"eip155:{chain_id}",
            "chain_type": "ethereum",
            "params": {
                "transaction": {
                    "to": tx["to"],
                    "data": tx.get("data", "0x"),
                    "value": hex(tx.get("value", 0)),
                    "nonce": hex(tx["nonce"]),
                    "gas_limit": hex(tx["gas"]),
                    "gas_price": hex(tx["gasPrice"]),
                    "chain_id": chain_id,
                }
            },
        }

        try:
            session = self._get_session()
            async with session.post(url, json=body) as response:
                payload = await response.json(content_type=None)
                status = response.status
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.warning("custody_request_failed", wallet_id=wallet_id, error=str(e))
            raise ChainRpcTransient(raw=str(e) or type(e).__name__) from e

        if status == 404:
            raise WalletNotFound(wallet_id=wallet_id)
        if status == 429 or status >= 500:
            raise ChainRpcTransient(raw=f"custody HTTP {status}")
        if status in (401, 403):
            logger.error("custody_auth_rejected", status=status)
            raise ExecutionError("Signing service rejected credentials.", status=status)
        if status >= 400:
            message = _error_message(payload)
            logger.warning(
                "custody_transaction_rejected",
                wallet_id=wallet_id,
                status=status,
                error=message,
            )
            raise classify_error_message(message)

        tx_hash = (payload.get("data") or {}).get("hash")
        if not tx_hash:
            raise ExecutionError("Signing service returned no transaction hash.")
        return tx_hash

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        return str(payload.get("message", ""))
    return str(payload)
