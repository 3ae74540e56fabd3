"""Execution orchestrator: fund the user's wallet, then run the strategy.

Callers (intake, webhook, operator resume) must hold the execution claim
for the payment before calling ``execute``. The orchestrator itself is
stateless between calls; all progress lives on the Position so a re-run
after a crash picks up where the last run stopped.

Flow:
0. Load the position, check protocol minimums and the custody mapping
   (nothing has moved yet, so these failures cost nothing).
1. Fund: stablecoin transfer of exactly the deposit amount and a fixed
   native gas amount, both from the hub wallet.
2. Strategy: conservative supply or leveraged order.
3. Mark the position active, or failed with a classified error.
"""

from __future__ import annotations

import time
from decimal import Decimal

import structlog

from onramp.chain import contracts
from onramp.config import ChainSettings, CustodySettings
from onramp.custody.signer import CustodialSigner
from onramp.exceptions import (
    ExecutionError,
    InsufficientHubBalance,
    MappingMissing,
    OnrampError,
    StoreUnavailable,
)
from onramp.execution.steps import StepRunner
from onramp.execution.strategies import Strategy
from onramp.ledger import PositionLedger
from onramp.logging import get_logger
from onramp.models import (
    Claimant,
    ExecutionResult,
    Position,
    PositionStatus,
    StepResult,
    StrategyType,
)
from onramp.monitoring.tracker import Monitor

logger = get_logger(__name__)


class ExecutionOrchestrator:
    """Runs the funding and strategy steps for one payment.

    Args:
        ledger: Position ledger (positions and claims).
        signer: Custodial signer (wallet lookup).
        runner: Step runner shared with the strategies.
        strategies: One Strategy per StrategyType.
        monitor: Metrics, error reports and operator alerts.
        chain_settings: Stablecoin address and decimals.
        custody_settings: Hub wallet address.
    """

    def __init__(
        self,
        ledger: PositionLedger,
        signer: CustodialSigner,
        runner: StepRunner,
        strategies: dict[StrategyType, Strategy],
        monitor: Monitor,
        chain_settings: ChainSettings,
        custody_settings: CustodySettings,
    ) -> None:
        self._ledger = ledger
        self._signer = signer
        self._runner = runner
        self._strategies = strategies
        self._monitor = monitor
        self._chain_settings = chain_settings
        self._hub_address = custody_settings.hub_wallet_address

    def validate_amount(self, strategy_type: StrategyType, amount: Decimal) -> None:
        """Check an amount against the strategy's protocol minimums.

        Raises:
            BelowProtocolMinimum: If the strategy cannot open a position.
        """
        self._strategies[strategy_type].validate(amount)

    async def execute(
        self, wallet_address: str, usd_amount: Decimal, payment_id: str
    ) -> ExecutionResult:
        """Fund ``wallet_address`` and run the position's strategy.

        Args:
            wallet_address: User wallet recorded on the position.
            usd_amount: Deposit amount; must equal the position's deposit_amount.
            payment_id: Internal payment id.

        Returns:
            ExecutionResult. Execution failures are recorded on the position
            and returned, not raised.

        Raises:
            MappingMissing: If no position exists for ``payment_id``.
            StoreUnavailable: If the ledger cannot be read or written.
        """
        position = await self._ledger.get_by_internal_id(payment_id)
        if position is None:
            raise MappingMissing(payment_id=payment_id)

        if position.status == PositionStatus.ACTIVE:
            logger.info("execution_already_complete", payment_id=payment_id)
            return ExecutionResult(
                payment_id=payment_id, success=True, status=PositionStatus.ACTIVE
            )

        amount = position.deposit_amount
        if usd_amount != amount:
            logger.error(
                "execution_amount_mismatch",
                payment_id=payment_id,
                requested=str(usd_amount),
                ledger=str(amount),
            )
        if wallet_address.lower() != position.wallet_address.lower():
            logger.error(
                "execution_wallet_mismatch",
                payment_id=payment_id,
                requested=wallet_address.lower(),
                ledger=position.wallet_address.lower(),
            )

        strategy = self._strategies[position.strategy_type]
        endpoint = f"execute.{position.strategy_type.value}"
        started = time.perf_counter()
        steps: list[StepResult] = []

        with structlog.contextvars.bound_contextvars(
            payment_id=payment_id, strategy=position.strategy_type.value
        ):
            logger.info("execution_started", amount=str(amount))
            try:
                strategy.validate(amount)
                await self._signer.resolve_wallet_id(position.wallet_address)
                position.status = PositionStatus.EXECUTING
                await self._ledger.update_status(payment_id, PositionStatus.EXECUTING)
                await self._ledger.record_execution_status(payment_id, PositionStatus.EXECUTING)

                steps.extend(await self._fund(position, amount, strategy.gas_amount))
                steps.extend(await strategy.execute(position, amount))
            except ExecutionError as e:
                await self._record_failure(position, e, endpoint, started)
                return ExecutionResult(
                    payment_id=payment_id,
                    success=False,
                    status=PositionStatus.FAILED,
                    steps=steps,
                    error=e.to_dict(),
                )
            except Exception as e:
                # Unexpected: record what we can, then surface to the caller
                failure = e if isinstance(e, OnrampError) else ExecutionError()
                try:
                    await self._record_failure(position, failure, endpoint, started, cause=e)
                except StoreUnavailable:
                    logger.error("execution_failure_not_recorded", error=str(e))
                raise

            await self._ledger.update_status(payment_id, PositionStatus.ACTIVE)
            await self._ledger.record_execution_status(payment_id, PositionStatus.ACTIVE)
            await self._ledger.record_claim_outcome(payment_id, PositionStatus.ACTIVE.value)
            await self._monitor.record(
                endpoint, "success", (time.perf_counter() - started) * 1000
            )
            logger.info(
                "execution_completed",
                tx_hashes={s.name: s.tx_hash for s in steps if s.tx_hash},
            )
            return ExecutionResult(
                payment_id=payment_id,
                success=True,
                status=PositionStatus.ACTIVE,
                steps=steps,
            )

    async def resume(self, payment_id: str) -> ExecutionResult:
        """Operator-driven re-run of a failed or interrupted execution.

        Takes over the execution claim and re-runs ``execute``; steps whose
        hashes are already recorded are confirmed, not re-broadcast.
        """
        position = await self._ledger.get_by_internal_id(payment_id)
        if position is None:
            raise MappingMissing(payment_id=payment_id)
        if position.status == PositionStatus.ACTIVE:
            return ExecutionResult(
                payment_id=payment_id, success=True, status=PositionStatus.ACTIVE
            )
        await self._ledger.force_claim(payment_id, Claimant.OPERATOR)
        return await self.execute(
            position.wallet_address, position.deposit_amount, payment_id
        )

    async def _fund(
        self, position: Position, amount: Decimal, gas_amount: Decimal
    ) -> list[StepResult]:
        if not self._hub_address:
            raise ExecutionError("Hub wallet is not configured.")

        token = self._chain_settings.stablecoin_address
        units = contracts.to_base_units(amount, self._chain_settings.stablecoin_decimals)
        gas_wei = contracts.to_base_units(gas_amount, contracts.NATIVE_DECIMALS)

        if not position.funding_tx_hash:
            hub_balance = await self._runner.retry(
                "hub_stable_balance",
                lambda _: self._runner.chain.get_token_balance(token, self._hub_address),
            )
            if hub_balance < units:
                raise InsufficientHubBalance(
                    asset="stablecoin", balance=hub_balance, required=units
                )
        if not position.gas_tx_hash:
            hub_native = await self._runner.retry(
                "hub_native_balance",
                lambda _: self._runner.chain.get_native_balance(self._hub_address),
            )
            if hub_native < gas_wei:
                raise InsufficientHubBalance(asset="native", balance=hub_native, required=gas_wei)

        funding = await self._runner.send_once(
            position,
            "fund_stablecoin",
            "funding_tx_hash",
            sender=self._hub_address,
            to=token,
            data=contracts.erc20_transfer(position.wallet_address, units),
        )
        gas = await self._runner.send_once(
            position,
            "fund_gas",
            "gas_tx_hash",
            sender=self._hub_address,
            to=position.wallet_address,
            value=gas_wei,
        )
        return [funding, gas]

    async def _record_failure(
        self,
        position: Position,
        error: OnrampError,
        endpoint: str,
        started: float,
        cause: BaseException | None = None,
    ) -> None:
        logger.error(
            "execution_failed",
            error_code=error.code,
            error=str(cause or error),
            details=error.details,
        )
        if isinstance(error, InsufficientHubBalance):
            await self._monitor.alert(
                "Hub wallet balance too low to fund deposit",
                payment_id=position.payment_id,
                **error.details,
            )
        await self._monitor.report_error(
            cause or error,
            endpoint,
            {"payment_id": position.payment_id, "wallet_address": position.wallet_address},
        )
        await self._monitor.record(endpoint, "error", (time.perf_counter() - started) * 1000)
        await self._ledger.update_status(
            position.payment_id, PositionStatus.FAILED, error=error.to_dict()
        )
        await self._ledger.record_execution_status(position.payment_id, PositionStatus.FAILED)
        await self._ledger.record_claim_outcome(
            position.payment_id, f"{PositionStatus.FAILED.value}:{error.code}"
        )
