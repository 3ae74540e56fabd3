"""Deposit strategies run after the user's wallet is funded.

Both implement the Strategy ABC so the orchestrator is identical for
conservative and leveraged deposits. A strategy validates protocol minimums
up front (before any funds move) and then runs its steps through the
StepRunner, which provides retry and step idempotency.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import ROUND_DOWN, Decimal

from web3 import Web3

from onramp.chain import contracts
from onramp.chain.prices import PriceFeed
from onramp.config import ChainSettings, StrategySettings
from onramp.exceptions import BelowProtocolMinimum, ExecutionError
from onramp.execution.steps import StepRunner
from onramp.ledger import PositionLedger
from onramp.logging import get_logger
from onramp.models import Position, StepResult, StrategyType

logger = get_logger(__name__)


class Strategy(ABC):
    """Abstract base class for deposit strategies.

    Args:
        runner: Shared step runner.
        ledger: Position ledger for recording strategy outputs.
        chain_settings: Stablecoin address and decimals.
        settings: Protocol addresses and sizing.
    """

    strategy_type: StrategyType

    def __init__(
        self,
        runner: StepRunner,
        ledger: PositionLedger,
        chain_settings: ChainSettings,
        settings: StrategySettings,
    ) -> None:
        self._runner = runner
        self._ledger = ledger
        self._chain_settings = chain_settings
        self._settings = settings

    @property
    @abstractmethod
    def gas_amount(self) -> Decimal:
        """Native token sent to the user's wallet alongside the stablecoin."""
        ...

    @abstractmethod
    def validate(self, amount: Decimal) -> None:
        """Check protocol minimums.

        Raises:
            BelowProtocolMinimum: If ``amount`` cannot open a position.
        """
        ...

    @abstractmethod
    async def execute(self, position: Position, amount: Decimal) -> list[StepResult]:
        """Run the strategy's on-chain steps for a funded wallet."""
        ...

    def _stable_units(self, amount: Decimal) -> int:
        return contracts.to_base_units(amount, self._chain_settings.stablecoin_decimals)


class ConservativeStrategy(Strategy):
    """Supply the deposit to the lending pool on behalf of the user."""

    strategy_type = StrategyType.CONSERVATIVE

    @property
    def gas_amount(self) -> Decimal:
        return self._settings.conservative_gas_amount

    def validate(self, amount: Decimal) -> None:
        if amount < self._settings.min_supply_usd:
            raise BelowProtocolMinimum(
                f"Minimum supply is ${self._settings.min_supply_usd}",
                amount=str(amount),
            )

    async def execute(self, position: Position, amount: Decimal) -> list[StepResult]:
        wallet = position.wallet_address
        token = self._chain_settings.stablecoin_address
        pool = self._settings.lending_pool_address
        units = self._stable_units(amount)

        approval = await self._runner.ensure_allowance(position, token, wallet, pool, units)
        supply = await self._runner.send_once(
            position,
            "supply",
            "supply_tx_hash",
            sender=wallet,
            to=pool,
            data=contracts.lending_supply(token, units, wallet),
        )
        if position.supply_amount != amount:
            position.supply_amount = amount
            await self._ledger.update_position(position.payment_id, supply_amount=amount)

        logger.info(
            "conservative_supplied",
            payment_id=position.payment_id,
            amount=str(amount),
            tx_hash=supply.tx_hash,
        )
        return [approval, supply]


class LeveragedStrategy(Strategy):
    """Open a leveraged long on the perpetuals exchange with the deposit as collateral.

    Args:
        price_feed: Index price source for the acceptable price.
    """

    strategy_type = StrategyType.LEVERAGED

    def __init__(
        self,
        runner: StepRunner,
        ledger: PositionLedger,
        chain_settings: ChainSettings,
        settings: StrategySettings,
        price_feed: PriceFeed,
    ) -> None:
        super().__init__(runner, ledger, chain_settings, settings)
        self._price_feed = price_feed

    @property
    def gas_amount(self) -> Decimal:
        return self._settings.leveraged_gas_amount

    def validate(self, amount: Decimal) -> None:
        if amount < self._settings.min_collateral_usd:
            raise BelowProtocolMinimum(
                f"Minimum collateral is ${self._settings.min_collateral_usd}",
                amount=str(amount),
            )
        if amount * self._settings.leverage < self._settings.min_size_usd:
            raise BelowProtocolMinimum(
                f"Minimum position size is ${self._settings.min_size_usd}",
                amount=str(amount),
            )

    async def execute(self, position: Position, amount: Decimal) -> list[StepResult]:
        wallet = position.wallet_address
        token = self._chain_settings.stablecoin_address
        units = self._stable_units(amount)

        if not position.order_tx_hash:
            balance = await self._runner.retry(
                "collateral_balance",
                lambda _: self._runner.chain.get_token_balance(token, wallet),
            )
            if balance < units:
                raise ExecutionError(
                    "Wallet stablecoin balance is below the order collateral.",
                    balance=balance,
                    required=units,
                )

        approval = await self._runner.ensure_allowance(
            position, token, wallet, self._settings.router_spender_address, units
        )

        entry_price = position.entry_price
        acceptable_price = 0
        if not position.order_tx_hash:
            price = await self._runner.retry(
                "index_price",
                lambda _: self._price_feed.get_price(self._settings.index_token_symbol),
            )
            entry_price = price.price_usd
            acceptable_price = int(
                (Decimal(price.max_price) * (1 + self._settings.slippage)).to_integral_value(
                    rounding=ROUND_DOWN
                )
            )

        size_usd = amount * self._settings.leverage
        execution_fee = contracts.to_base_units(
            self._settings.execution_fee, contracts.NATIVE_DECIMALS
        )
        order = contracts.IncreaseOrder(
            receiver=wallet,
            market=self._settings.market_address,
            collateral_token=token,
            size_delta_usd=contracts.to_base_units(size_usd, contracts.USD_DECIMALS),
            collateral_amount=units,
            acceptable_price=acceptable_price,
            execution_fee=execution_fee,
        )

        result = await self._runner.send_once(
            position,
            "order",
            "order_tx_hash",
            sender=wallet,
            to=self._settings.exchange_router_address,
            data=contracts.build_increase_order_calldata(
                order, self._settings.order_vault_address
            ),
            value=execution_fee,
        )

        order_id = derive_order_id(result.tx_hash or "", position.payment_id)
        await self._ledger.update_position(
            position.payment_id,
            order_id=order_id,
            order_size_usd=size_usd,
            order_collateral_usd=amount,
            order_leverage=self._settings.leverage,
            entry_price=entry_price,
        )
        position.order_id = order_id

        logger.info(
            "leveraged_order_submitted",
            payment_id=position.payment_id,
            collateral=str(amount),
            size_usd=str(size_usd),
            leverage=str(self._settings.leverage),
            entry_price=str(entry_price),
            tx_hash=result.tx_hash,
        )
        return [approval, result]


def derive_order_id(tx_hash: str, payment_id: str) -> str:
    """Stable order identifier derived from the order transaction and payment."""
    return Web3.to_hex(Web3.keccak(text=f"{tx_hash.lower()}:{payment_id}"))
