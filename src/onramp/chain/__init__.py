"""Chain access layer -- JSON-RPC reads, calldata encoding, error classification."""

from onramp.chain.client import ChainClient
from onramp.chain.errors import RevertReason, classify_chain_error, classify_revert
from onramp.chain.prices import IndexPrice, PriceFeed, TickerPriceFeed
from onramp.chain.web3_client import Web3ChainClient

__all__ = [
    "ChainClient",
    "IndexPrice",
    "PriceFeed",
    "RevertReason",
    "TickerPriceFeed",
    "Web3ChainClient",
    "classify_chain_error",
    "classify_revert",
]
