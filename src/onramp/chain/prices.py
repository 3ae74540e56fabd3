"""Index price feed for leveraged order pricing."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

import aiohttp

from onramp.chain.contracts import USD_DECIMALS
from onramp.exceptions import ChainRpcTransient, ExecutionError
from onramp.logging import get_logger

logger = get_logger(__name__)


@dataclass
class IndexPrice:
    """Index token price in the exchange's on-chain fixed point format."""

    symbol: str
    min_price: int
    max_price: int
    token_decimals: int

    @property
    def price_usd(self) -> Decimal:
        """Max price as a plain USD Decimal."""
        return Decimal(self.max_price) / (Decimal(10) ** (USD_DECIMALS - self.token_decimals))


class PriceFeed(ABC):
    @abstractmethod
    async def get_price(self, symbol: str) -> IndexPrice:
        """Current price for ``symbol``.

        Raises:
            ChainRpcTransient: If the feed is unreachable.
            ExecutionError: If the symbol is not quoted.
        """
        ...


class TickerPriceFeed(PriceFeed):
    """Reads the exchange's public tickers endpoint.

    Args:
        url: Tickers endpoint returning a list of
            ``{tokenSymbol, minPrice, maxPrice}`` objects.
        token_decimals: Decimals of the index token being priced.
        timeout_seconds: Request timeout.
    """

    def __init__(self, url: str, token_decimals: int, timeout_seconds: float = 10.0) -> None:
        self._url = url
        self._token_decimals = token_decimals
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def get_price(self, symbol: str) -> IndexPrice:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(self._url) as response:
                    if response.status >= 500 or response.status == 429:
                        raise ChainRpcTransient(raw=f"price feed HTTP {response.status}")
                    response.raise_for_status()
                    tickers = await response.json()
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.warning("price_feed_unavailable", url=self._url, error=str(e))
            raise ChainRpcTransient(raw=str(e) or type(e).__name__) from e

        for ticker in tickers:
            if str(ticker.get("tokenSymbol", "")).upper() == symbol.upper():
                price = IndexPrice(
                    symbol=symbol,
                    min_price=int(ticker["minPrice"]),
                    max_price=int(ticker["maxPrice"]),
                    token_decimals=self._token_decimals,
                )
                logger.debug("index_price_fetched", symbol=symbol, price_usd=str(price.price_usd))
                return price

        raise ExecutionError(f"No price available for {symbol}")
