"""Idempotent, retrying execution steps.

A step broadcasts at most one transaction per recorded hash field on the
Position. The hash is written to the ledger as soon as the custody service
returns it, before waiting for confirmation, so a crash between broadcast
and receipt never leads to a second broadcast: a re-run finds the hash and
only re-confirms it.

Retry policy:
- ChainRpcTransient: retried with exponential backoff up to max_attempts.
  When the broadcast itself timed out the retry reuses the same nonce, so
  at most one of the attempts can be mined.
- NonceConflict on a reused nonce: the earlier attempt probably landed;
  stop and leave it for operator review.
- Everything else (reverts, missing wallets, hub balance): no retry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from onramp.chain import contracts
from onramp.chain.client import ChainClient
from onramp.config import ChainSettings, ExecutionSettings
from onramp.custody.signer import CustodialSigner
from onramp.exceptions import (
    ApprovalFailed,
    ChainRpcTransient,
    ContractRevert,
    ExecutionError,
    NonceConflict,
)
from onramp.ledger import PositionLedger
from onramp.logging import get_logger
from onramp.models import Position, StepResult, StepStatus

logger = get_logger(__name__)

T = TypeVar("T")


class StepRunner:
    """Runs chain reads and transaction steps with retry and idempotency.

    Args:
        ledger: Position ledger, for recording hashes as they are broadcast.
        signer: Custodial signer used for every broadcast.
        chain: Chain client for receipts and allowance checks.
        chain_settings: Chain id and receipt timeout.
        settings: Retry limits and base delay.
        sleep: Awaitable sleep (tests pass a no-op).
    """

    def __init__(
        self,
        ledger: PositionLedger,
        signer: CustodialSigner,
        chain: ChainClient,
        chain_settings: ChainSettings,
        settings: ExecutionSettings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._signer = signer
        self._chain = chain
        self._chain_settings = chain_settings
        self._settings = settings
        self._sleep = sleep

    @property
    def chain(self) -> ChainClient:
        return self._chain

    async def retry(
        self, name: str, operation: Callable[[int | None], Awaitable[T]]
    ) -> T:
        """Call ``operation(pinned_nonce)`` until it succeeds or fails permanently.

        Args:
            name: Step name for logs.
            operation: Receives the nonce to reuse (None on a fresh attempt).

        Raises:
            ChainRpcTransient: After max_attempts transient failures.
            ExecutionError: On any non-retryable failure.
        """
        pinned: int | None = None
        attempt = 1
        while True:
            try:
                return await operation(pinned)
            except NonceConflict as e:
                if pinned is not None:
                    logger.error(
                        "step_nonce_reused_conflict",
                        step=name,
                        nonce=pinned,
                        error=str(e.details.get("raw", e)),
                    )
                    raise ExecutionError(
                        "Transaction state is ambiguous and needs manual review.",
                        step=name,
                        nonce=pinned,
                    ) from e
                error: ChainRpcTransient = e
            except ChainRpcTransient as e:
                pinned = e.details.get("nonce", pinned)
                error = e

            if attempt >= self._settings.max_attempts:
                logger.error("step_retries_exhausted", step=name, attempts=attempt)
                raise error

            delay = self._settings.retry_base_delay * (2 ** (attempt - 1))
            logger.warning(
                "step_retry",
                step=name,
                attempt=attempt,
                delay=delay,
                error=str(error.details.get("raw", error)),
            )
            await self._sleep(delay)
            attempt += 1

    async def confirm(self, name: str, tx_hash: str) -> None:
        """Wait for ``tx_hash`` to be mined successfully.

        Raises:
            ContractRevert: If the transaction reverted.
        """
        receipt = await self.retry(
            f"{name}.receipt",
            lambda _: self._chain.wait_for_receipt(
                tx_hash, self._chain_settings.receipt_timeout_seconds
            ),
        )
        if not receipt.succeeded:
            logger.error("transaction_reverted", step=name, tx_hash=tx_hash)
            raise ContractRevert(
                "Transaction reverted on-chain", reason="UNKNOWN", raw=tx_hash
            )

    async def send_once(
        self,
        position: Position,
        name: str,
        hash_field: str,
        sender: str,
        to: str,
        data: str = "0x",
        value: int = 0,
    ) -> StepResult:
        """Broadcast a transaction unless ``position.<hash_field>`` is already set.

        The recorded hash is written to the ledger before confirmation and
        mirrored onto ``position``.
        """
        recorded = getattr(position, hash_field)
        if recorded:
            logger.info("step_already_recorded", step=name, tx_hash=recorded)
            await self.confirm(name, recorded)
            return StepResult(name=name, status=StepStatus.SKIPPED, tx_hash=recorded)

        tx_hash = await self.retry(
            name,
            lambda nonce: self._signer.sign_and_send(
                sender,
                to,
                data=data,
                value=value,
                chain_id=self._chain_settings.chain_id,
                nonce=nonce,
            ),
        )
        setattr(position, hash_field, tx_hash)
        await self._ledger.update_position(position.payment_id, **{hash_field: tx_hash})
        logger.info("step_broadcast", step=name, tx_hash=tx_hash)

        await self.confirm(name, tx_hash)
        logger.info("step_confirmed", step=name, tx_hash=tx_hash)
        return StepResult(name=name, status=StepStatus.CONFIRMED, tx_hash=tx_hash)

    async def ensure_allowance(
        self,
        position: Position,
        token: str,
        owner: str,
        spender: str,
        amount: int,
    ) -> StepResult:
        """Approve ``spender`` for ``amount`` if the current allowance is short.

        A failed approval is retried ``approval_retries`` times, re-checking
        the allowance before each new attempt.

        Raises:
            ApprovalFailed: If the allowance is still short after all attempts.
        """
        name = "approve"
        last_error: ExecutionError | None = None
        for attempt in range(1 + self._settings.approval_retries):
            allowance = await self.retry(
                "allowance",
                lambda _: self._chain.get_allowance(token, owner, spender),
            )
            if allowance >= amount:
                if attempt == 0 and not position.approval_tx_hash:
                    return StepResult(name=name, status=StepStatus.SKIPPED)
                return StepResult(
                    name=name, status=StepStatus.CONFIRMED, tx_hash=position.approval_tx_hash
                )

            if attempt > 0:
                # Start a fresh approval rather than re-confirming the failed one
                position.approval_tx_hash = None
                logger.warning(
                    "approval_retry",
                    attempt=attempt,
                    allowance=allowance,
                    required=amount,
                )
            try:
                await self.send_once(
                    position,
                    name,
                    "approval_tx_hash",
                    sender=owner,
                    to=token,
                    data=contracts.erc20_approve(spender, amount),
                )
            except ExecutionError as e:
                if not isinstance(e, (ContractRevert, ChainRpcTransient)):
                    raise
                last_error = e
                logger.warning("approval_failed", attempt=attempt, error=str(e))

        allowance = await self.retry(
            "allowance", lambda _: self._chain.get_allowance(token, owner, spender)
        )
        if allowance >= amount:
            return StepResult(name=name, status=StepStatus.CONFIRMED, tx_hash=position.approval_tx_hash)
        raise ApprovalFailed(
            "Token approval failed. Please try again later.",
            allowance=allowance,
            required=amount,
            cause=str(last_error) if last_error else None,
        )
