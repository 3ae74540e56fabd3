"""Idempotent position ledger.

Owns three records per payment in the shared store:

- ``payment_info:{payment_id}``: the serialized Position
- ``square_to_frontend:{gateway_id}``: gateway payment id -> internal id
- ``execution_claim:{payment_id}``: who may run the orchestrator

The execution claim is the at-most-once gate for on-chain effects. It is
created with a single set-if-absent round trip and is never released; the
only way to take it over is an explicit operator ``force_claim``.
"""

from __future__ import annotations

import time
from typing import Any

from onramp.exceptions import PositionExists
from onramp.logging import get_logger
from onramp.models import Claimant, ExecutionClaim, Position, PositionStatus
from onramp.store import keys
from onramp.store.base import KeyValueStore

logger = get_logger(__name__)


class PositionLedger:
    """Position records, gateway mappings and execution claims.

    Args:
        store: Shared key-value store.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def create_position(self, position: Position) -> Position:
        """Persist a new position. Exactly one position may exist per payment id.

        Raises:
            PositionExists: If a position for ``position.payment_id`` exists.
            StoreUnavailable: If the store cannot be reached.
        """
        written = await self._store.set_json(
            keys.payment_info(position.payment_id),
            position.to_dict(),
            ttl=keys.PAYMENT_INFO_TTL,
            nx=True,
        )
        if not written:
            raise PositionExists(payment_id=position.payment_id)

        index_key = keys.wallet_positions(position.wallet_address)
        await self._store.sadd(index_key, position.payment_id)
        await self._store.expire(index_key, keys.WALLET_INDEX_TTL)

        logger.info(
            "position_created",
            payment_id=position.payment_id,
            position_id=position.position_id,
            strategy=position.strategy_type.value,
            amount=str(position.deposit_amount),
        )
        return position

    async def get_by_internal_id(self, payment_id: str) -> Position | None:
        data = await self._store.get_json(keys.payment_info(payment_id))
        if data is None:
            return None
        return Position.from_dict(data)

    async def resolve_payment_id(self, gateway_payment_id: str) -> str | None:
        """Return the internal payment id mapped to a gateway payment id."""
        return await self._store.get(keys.gateway_mapping(gateway_payment_id))

    async def get_by_gateway_id(self, gateway_payment_id: str) -> Position | None:
        payment_id = await self.resolve_payment_id(gateway_payment_id)
        if payment_id is None:
            return None
        return await self.get_by_internal_id(payment_id)

    async def save(self, position: Position) -> Position:
        """Overwrite the stored position (refreshing its TTL)."""
        position.updated_at = time.time()
        await self._store.set_json(
            keys.payment_info(position.payment_id),
            position.to_dict(),
            ttl=keys.PAYMENT_INFO_TTL,
        )
        return position

    async def update_position(self, payment_id: str, **changes: Any) -> Position:
        """Apply field changes to a stored position and persist it.

        Raises:
            KeyError: If no position exists for ``payment_id``.
        """
        position = await self.get_by_internal_id(payment_id)
        if position is None:
            raise KeyError(payment_id)
        for name, value in changes.items():
            if not hasattr(position, name):
                raise AttributeError(f"Position has no field {name!r}")
            setattr(position, name, value)
        return await self.save(position)

    async def update_status(
        self,
        payment_id: str,
        status: PositionStatus,
        error: dict[str, Any] | None = None,
    ) -> Position:
        changes: dict[str, Any] = {"status": status}
        if error is not None:
            changes["error"] = error
        if status == PositionStatus.ACTIVE:
            changes["executed_at"] = time.time()
            changes["error"] = None
        elif status == PositionStatus.CLOSED:
            changes["closed_at"] = time.time()
        position = await self.update_position(payment_id, **changes)
        logger.info("position_status_changed", payment_id=payment_id, status=status.value)
        return position

    async def list_wallet_positions(self, wallet_address: str) -> list[Position]:
        """All live positions for a wallet, newest first."""
        payment_ids = await self._store.smembers(keys.wallet_positions(wallet_address))
        positions = []
        for payment_id in payment_ids:
            position = await self.get_by_internal_id(payment_id)
            if position is not None:
                positions.append(position)
        positions.sort(key=lambda p: p.created_at, reverse=True)
        return positions

    # ------------------------------------------------------------------
    # Gateway mapping
    # ------------------------------------------------------------------

    async def record_gateway_mapping(
        self, gateway_payment_id: str, payment_id: str
    ) -> bool:
        """Map a gateway payment id to its internal payment id.

        A gateway id resolves to exactly one payment id: an existing mapping
        is never overwritten.

        Returns:
            True if the mapping now points at ``payment_id``.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        key = keys.gateway_mapping(gateway_payment_id)
        written = await self._store.set(
            key, payment_id, ttl=keys.GATEWAY_MAPPING_TTL, nx=True
        )
        if written:
            logger.info(
                "gateway_mapping_recorded",
                gateway_payment_id=gateway_payment_id,
                payment_id=payment_id,
            )
            return True

        existing = await self._store.get(key)
        if existing != payment_id:
            logger.error(
                "gateway_mapping_conflict",
                gateway_payment_id=gateway_payment_id,
                payment_id=payment_id,
                existing_payment_id=existing,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Execution claims
    # ------------------------------------------------------------------

    async def claim_execution(self, payment_id: str, claimant: Claimant) -> bool:
        """Atomically claim the right to execute ``payment_id``.

        Returns:
            True for exactly one caller across all instances; False for the rest.

        Raises:
            StoreUnavailable: If the store cannot be reached (treat as not claimed).
        """
        claim = ExecutionClaim(claimed_by=claimant)
        acquired = await self._store.set_json(
            keys.execution_claim(payment_id),
            claim.to_dict(),
            ttl=keys.EXECUTION_CLAIM_TTL,
            nx=True,
        )
        if acquired:
            logger.info("execution_claimed", payment_id=payment_id, claimed_by=claimant.value)
        else:
            logger.info(
                "execution_claim_lost", payment_id=payment_id, claimant=claimant.value
            )
        return acquired

    async def get_claim(self, payment_id: str) -> ExecutionClaim | None:
        data = await self._store.get_json(keys.execution_claim(payment_id))
        if data is None:
            return None
        return ExecutionClaim.from_dict(data)

    async def record_claim_outcome(self, payment_id: str, outcome: str) -> None:
        """Annotate an existing claim with its final outcome."""
        claim = await self.get_claim(payment_id)
        if claim is None:
            logger.warning("claim_outcome_without_claim", payment_id=payment_id)
            return
        claim.outcome = outcome
        await self._store.set_json(
            keys.execution_claim(payment_id),
            claim.to_dict(),
            ttl=keys.EXECUTION_CLAIM_TTL,
        )

    async def force_claim(
        self, payment_id: str, claimant: Claimant = Claimant.OPERATOR
    ) -> ExecutionClaim:
        """Take over execution ownership for an operator-driven resume."""
        previous = await self.get_claim(payment_id)
        claim = ExecutionClaim(claimed_by=claimant)
        await self._store.set_json(
            keys.execution_claim(payment_id),
            claim.to_dict(),
            ttl=keys.EXECUTION_CLAIM_TTL,
        )
        logger.warning(
            "execution_claim_forced",
            payment_id=payment_id,
            claimed_by=claimant.value,
            previous_claimant=previous.claimed_by.value if previous else None,
            previous_outcome=previous.outcome if previous else None,
        )
        return claim

    # ------------------------------------------------------------------
    # Operator attention indexes
    # ------------------------------------------------------------------

    async def record_execution_status(self, payment_id: str, status: PositionStatus) -> None:
        """Keep the failed and executing indexes in step with an execution run.

        A payment stays in ``failed_payments`` until a later run of it
        succeeds, and in ``executing_payments`` while a run is in flight.
        """
        if status == PositionStatus.EXECUTING:
            await self._store.srem(keys.FAILED_PAYMENTS, payment_id)
            await self._store.sadd(keys.EXECUTING_PAYMENTS, payment_id)
        elif status == PositionStatus.FAILED:
            await self._store.srem(keys.EXECUTING_PAYMENTS, payment_id)
            await self._store.sadd(keys.FAILED_PAYMENTS, payment_id)
        else:
            await self._store.srem(keys.EXECUTING_PAYMENTS, payment_id)
            await self._store.srem(keys.FAILED_PAYMENTS, payment_id)

    async def list_failed(self) -> list[Position]:
        """Failed executions awaiting an operator resume, oldest first."""
        return await self._load_index(keys.FAILED_PAYMENTS, PositionStatus.FAILED)

    async def list_stuck(self, older_than: float, now: float | None = None) -> list[Position]:
        """Executions still in flight ``older_than`` seconds after they were claimed."""
        now = time.time() if now is None else now
        stuck = []
        for position in await self._load_index(
            keys.EXECUTING_PAYMENTS, PositionStatus.EXECUTING
        ):
            claim = await self.get_claim(position.payment_id)
            started = claim.claimed_at if claim is not None else position.updated_at
            if now - started >= older_than:
                stuck.append(position)
        return stuck

    async def _load_index(self, index_key: str, status: PositionStatus) -> list[Position]:
        positions = []
        for payment_id in await self._store.smembers(index_key):
            position = await self.get_by_internal_id(payment_id)
            if position is None or position.status != status:
                # Expired, or moved on since it was indexed
                await self._store.srem(index_key, payment_id)
                continue
            positions.append(position)
        positions.sort(key=lambda p: p.created_at)
        return positions
