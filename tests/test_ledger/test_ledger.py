"""Tests for PositionLedger.

Tests verify:
- Exactly one position may be created per payment id
- Positions round-trip with Decimal amounts intact
- Gateway mappings are never overwritten
- Exactly one of N concurrent claimants wins the execution claim
- force_claim takes over an existing claim for operator resume
- Status updates set executed_at and clear the error on ACTIVE
- Wallet listings return newest first
- Failed and stuck executions are listed for operators and drop out once resolved
"""

import asyncio
from decimal import Decimal

import pytest

from onramp.exceptions import PositionExists
from onramp.ledger import PositionLedger
from onramp.models import Claimant, PositionStatus
from onramp.store import keys


class TestPositions:
    @pytest.mark.asyncio
    async def test_create_and_read(self, ledger: PositionLedger, make_position) -> None:
        await ledger.create_position(make_position(deposit_amount=Decimal("123.45")))

        position = await ledger.get_by_internal_id("pay_test")
        assert position is not None
        assert position.deposit_amount == Decimal("123.45")
        assert position.status == PositionStatus.PENDING

    @pytest.mark.asyncio
    async def test_create_twice_raises(self, ledger: PositionLedger, make_position) -> None:
        await ledger.create_position(make_position())
        with pytest.raises(PositionExists):
            await ledger.create_position(make_position(deposit_amount=Decimal("999")))

        position = await ledger.get_by_internal_id("pay_test")
        assert position.deposit_amount == Decimal("50")

    @pytest.mark.asyncio
    async def test_update_position_fields(self, ledger: PositionLedger, make_position) -> None:
        await ledger.create_position(make_position())
        await ledger.update_position("pay_test", funding_tx_hash="0xabc")

        position = await ledger.get_by_internal_id("pay_test")
        assert position.funding_tx_hash == "0xabc"

    @pytest.mark.asyncio
    async def test_update_missing_position_raises(self, ledger: PositionLedger) -> None:
        with pytest.raises(KeyError):
            await ledger.update_position("pay_missing", funding_tx_hash="0xabc")

    @pytest.mark.asyncio
    async def test_active_sets_executed_at_and_clears_error(
        self, ledger: PositionLedger, make_position
    ) -> None:
        await ledger.create_position(make_position())
        await ledger.update_status(
            "pay_test", PositionStatus.FAILED, error={"code": "x", "message": "y"}
        )
        position = await ledger.update_status("pay_test", PositionStatus.ACTIVE)

        assert position.executed_at is not None
        assert position.error is None

    @pytest.mark.asyncio
    async def test_wallet_listing_newest_first(
        self, ledger: PositionLedger, make_position
    ) -> None:
        await ledger.create_position(make_position(payment_id="pay_old", created_at=100.0))
        await ledger.create_position(make_position(payment_id="pay_new", created_at=200.0))

        positions = await ledger.list_wallet_positions(
            "0x1111111111111111111111111111111111111111"
        )
        assert [p.payment_id for p in positions] == ["pay_new", "pay_old"]


class TestGatewayMapping:
    @pytest.mark.asyncio
    async def test_mapping_resolves(self, ledger: PositionLedger, make_position) -> None:
        await ledger.create_position(make_position())
        assert await ledger.record_gateway_mapping("sq_1", "pay_test") is True

        assert await ledger.resolve_payment_id("sq_1") == "pay_test"
        position = await ledger.get_by_gateway_id("sq_1")
        assert position.payment_id == "pay_test"

    @pytest.mark.asyncio
    async def test_mapping_is_idempotent(self, ledger: PositionLedger) -> None:
        assert await ledger.record_gateway_mapping("sq_1", "pay_test") is True
        assert await ledger.record_gateway_mapping("sq_1", "pay_test") is True

    @pytest.mark.asyncio
    async def test_mapping_never_overwritten(self, ledger: PositionLedger, store) -> None:
        await ledger.record_gateway_mapping("sq_1", "pay_first")
        assert await ledger.record_gateway_mapping("sq_1", "pay_second") is False
        assert await store.get(keys.gateway_mapping("sq_1")) == "pay_first"


class TestExecutionClaim:
    @pytest.mark.asyncio
    async def test_single_winner_under_concurrency(self, ledger: PositionLedger) -> None:
        claimants = [Claimant.INTAKE, Claimant.WEBHOOK] * 10

        results = await asyncio.gather(
            *(ledger.claim_execution("pay_race", c) for c in claimants)
        )

        assert sum(results) == 1
        claim = await ledger.get_claim("pay_race")
        assert claim is not None
        assert claim.claimed_by in (Claimant.INTAKE, Claimant.WEBHOOK)

    @pytest.mark.asyncio
    async def test_outcome_recorded(self, ledger: PositionLedger) -> None:
        await ledger.claim_execution("pay_1", Claimant.INTAKE)
        await ledger.record_claim_outcome("pay_1", "active")

        claim = await ledger.get_claim("pay_1")
        assert claim.claimed_by == Claimant.INTAKE
        assert claim.outcome == "active"

    @pytest.mark.asyncio
    async def test_force_claim_takes_over(self, ledger: PositionLedger) -> None:
        await ledger.claim_execution("pay_1", Claimant.WEBHOOK)
        await ledger.force_claim("pay_1", Claimant.OPERATOR)

        claim = await ledger.get_claim("pay_1")
        assert claim.claimed_by == Claimant.OPERATOR
        # The forced claim still blocks every later claimant
        assert await ledger.claim_execution("pay_1", Claimant.INTAKE) is False


class TestAttentionIndexes:
    @pytest.mark.asyncio
    async def test_failed_listed_until_success(
        self, ledger: PositionLedger, make_position
    ) -> None:
        await ledger.create_position(make_position())
        await ledger.update_status("pay_test", PositionStatus.FAILED)
        await ledger.record_execution_status("pay_test", PositionStatus.FAILED)

        assert [p.payment_id for p in await ledger.list_failed()] == ["pay_test"]

        await ledger.update_status("pay_test", PositionStatus.ACTIVE)
        await ledger.record_execution_status("pay_test", PositionStatus.ACTIVE)

        assert await ledger.list_failed() == []

    @pytest.mark.asyncio
    async def test_stale_entries_pruned(
        self, ledger: PositionLedger, store, make_position
    ) -> None:
        await ledger.create_position(make_position())
        await ledger.record_execution_status("pay_test", PositionStatus.FAILED)
        await ledger.record_execution_status("pay_gone", PositionStatus.FAILED)

        # pay_test is still PENDING and pay_gone has no position
        assert await ledger.list_failed() == []
        assert await store.smembers(keys.FAILED_PAYMENTS) == set()

    @pytest.mark.asyncio
    async def test_stuck_after_threshold(self, ledger: PositionLedger, make_position) -> None:
        await ledger.create_position(make_position())
        await ledger.claim_execution("pay_test", Claimant.WEBHOOK)
        await ledger.update_status("pay_test", PositionStatus.EXECUTING)
        await ledger.record_execution_status("pay_test", PositionStatus.EXECUTING)
        claimed_at = (await ledger.get_claim("pay_test")).claimed_at

        assert await ledger.list_stuck(900, now=claimed_at + 60) == []
        stuck = await ledger.list_stuck(900, now=claimed_at + 901)
        assert [p.payment_id for p in stuck] == ["pay_test"]
