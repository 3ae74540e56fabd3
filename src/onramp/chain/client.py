"""Abstract chain client interface.

Read-side JSON-RPC access used by the signer and the strategies. Signing and
broadcasting never happen here; they belong to the custody service.
"""

from abc import ABC, abstractmethod
from typing import Any

from onramp.models import TxReceipt


class ChainClient(ABC):
    """Abstract base class for EVM JSON-RPC access.

    Every method raises ChainRpcTransient on timeouts and connection
    failures, and ContractRevert when a call reverts.
    """

    @abstractmethod
    async def get_native_balance(self, address: str) -> int:
        """Native token balance in wei."""
        ...

    @abstractmethod
    async def get_token_balance(self, token: str, owner: str) -> int:
        """ERC-20 balance in token base units."""
        ...

    @abstractmethod
    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        ...

    @abstractmethod
    async def get_transaction_count(self, address: str) -> int:
        """Next nonce for ``address``, counting pending transactions."""
        ...

    @abstractmethod
    async def get_gas_price(self) -> int:
        ...

    @abstractmethod
    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        """Estimate gas for a transaction dict (from, to, data, value).

        Raises:
            ContractRevert: If the transaction would revert.
        """
        ...

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        """Block until ``tx_hash`` is mined.

        Raises:
            ChainRpcTransient: If it is not mined within ``timeout`` seconds.
        """
        ...
