"""Custodial signer: wallet lookup plus transaction assembly.

Wallets are addressed by their on-chain address. The address -> custody
wallet id mapping is written when a user authenticates (and for the hub
wallet, from configuration). The signer assembles nonce, gas price, gas
limit, value and chain id itself and delegates only signing and broadcast
to the custody service.
"""

from decimal import Decimal

from onramp.chain import contracts
from onramp.chain.client import ChainClient
from onramp.config import ChainSettings, CustodySettings
from onramp.custody.service import CustodyService
from onramp.exceptions import ChainRpcTransient, WalletNotFound
from onramp.logging import get_logger
from onramp.store import keys
from onramp.store.base import KeyValueStore

logger = get_logger(__name__)

_GWEI = Decimal(10) ** 9


class CustodialSigner:
    """Signs and broadcasts transactions for custodial wallets.

    Args:
        chain: Chain client for nonce, gas price and gas estimates.
        service: Remote signing service.
        store: Shared store holding the address -> wallet id mapping.
        chain_settings: Chain id, gas cap and gas limit defaults.
        custody_settings: Hub wallet address and id.
    """

    def __init__(
        self,
        chain: ChainClient,
        service: CustodyService,
        store: KeyValueStore,
        chain_settings: ChainSettings,
        custody_settings: CustodySettings,
    ) -> None:
        self._chain = chain
        self._service = service
        self._store = store
        self._chain_settings = chain_settings
        self._static_wallets: dict[str, str] = {}
        if custody_settings.hub_wallet_address and custody_settings.hub_wallet_id:
            self._static_wallets[custody_settings.hub_wallet_address.lower()] = (
                custody_settings.hub_wallet_id
            )

    async def register_wallet(self, wallet_address: str, wallet_id: str) -> None:
        """Record the custody wallet id for an address (called at authentication)."""
        await self._store.set(
            keys.wallet_custody(wallet_address), wallet_id, ttl=keys.WALLET_CUSTODY_TTL
        )
        logger.info("custody_wallet_registered", wallet=wallet_address.lower())

    async def resolve_wallet_id(self, wallet_address: str) -> str:
        """Return the custody wallet id for ``wallet_address``.

        Raises:
            WalletNotFound: If no mapping exists.
        """
        static = self._static_wallets.get(wallet_address.lower())
        if static is not None:
            return static
        wallet_id = await self._store.get(keys.wallet_custody(wallet_address))
        if wallet_id is None:
            raise WalletNotFound(wallet=wallet_address.lower())
        return wallet_id

    async def sign_and_send(
        self,
        wallet_address: str,
        to: str,
        data: str = "0x",
        value: int = 0,
        chain_id: int | None = None,
        nonce: int | None = None,
    ) -> str:
        """Assemble, sign and broadcast a transaction from a custodial wallet.

        Args:
            wallet_address: Sending wallet (resolved to a custody wallet id).
            to: Destination address.
            data: Calldata hex.
            value: Native value in wei.
            chain_id: Defaults to the configured chain.
            nonce: Reuse a nonce from an earlier ambiguous attempt; fetched
                from the chain (pending count) when None.

        Returns:
            Transaction hash.

        Raises:
            WalletNotFound: If the sender has no custody mapping.
            ChainRpcTransient: On transient failures. When the broadcast
                itself timed out, ``details["nonce"]`` carries the nonce used
                so a retry replaces rather than duplicates the transaction.
            ContractRevert: If gas estimation shows the call would revert.
        """
        wallet_id = await self.resolve_wallet_id(wallet_address)
        chain_id = chain_id or self._chain_settings.chain_id
        sender = contracts.checksum(wallet_address)
        target = contracts.checksum(to)

        if nonce is None:
            nonce = await self._chain.get_transaction_count(sender)

        gas_price = await self._chain.get_gas_price()
        cap = self._chain_settings.max_gas_price_gwei
        if cap > 0 and Decimal(gas_price) > cap * _GWEI:
            raise ChainRpcTransient(
                raw=f"gas price {gas_price} above cap {cap} gwei", nonce=nonce
            )

        gas_limit = await self._gas_limit(sender, target, data, value)

        tx = {
            "from": sender,
            "to": target,
            "data": data,
            "value": value,
            "nonce": nonce,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "chainId": chain_id,
        }
        try:
            tx_hash = await self._service.send_transaction(wallet_id, tx, chain_id)
        except ChainRpcTransient as e:
            e.details["nonce"] = nonce
            raise

        logger.info(
            "transaction_broadcast",
            wallet=sender,
            to=target,
            nonce=nonce,
            value=value,
            tx_hash=tx_hash,
        )
        return tx_hash

    async def _gas_limit(self, sender: str, to: str, data: str, value: int) -> int:
        try:
            estimate = await self._chain.estimate_gas(
                {"from": sender, "to": to, "data": data, "value": value}
            )
        except ChainRpcTransient as e:
            logger.warning(
                "gas_estimate_failed_using_default",
                to=to,
                default=self._chain_settings.default_gas_limit,
                error=str(e.details.get("raw", e)),
            )
            return self._chain_settings.default_gas_limit
        return int(Decimal(estimate) * self._chain_settings.gas_limit_buffer)
