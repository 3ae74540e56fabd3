"""Payment intake: validate, record, charge, and (on completion) execute.

Ordering matters:

1. The internal payment id and the pending Position exist before the
   gateway is called, so every charge can be tied back to a ledger record.
2. The gateway-id mapping is written after the charge; if that write fails
   the webhook falls back to the payment note.
3. Execution only starts after winning the execution claim. Anything that
   goes wrong after the charge succeeded is logged and recorded on the
   Position; it never turns the payment response into an error.
"""

from __future__ import annotations

import math
import time
from typing import Any
from uuid import uuid4

import structlog

from onramp.config import GatewaySettings, IntakeSettings
from onramp.exceptions import (
    BelowProtocolMinimum,
    DuplicateRequest,
    GatewayError,
    GatewayMisconfigured,
    OnrampError,
    RateLimited,
    StoreUnavailable,
    ValidationError,
)
from onramp.execution.orchestrator import ExecutionOrchestrator
from onramp.gateway.client import PaymentGateway
from onramp.gateway.notes import build_note
from onramp.intake.fees import FeeCalculator
from onramp.intake.validation import validate_payment_request
from onramp.ledger import PositionLedger
from onramp.logging import get_logger
from onramp.models import (
    ChargeAccepted,
    ChargeRequest,
    Claimant,
    GatewayPaymentStatus,
    PaymentRequest,
    Position,
    PositionStatus,
    new_payment_id,
    new_position_id,
)
from onramp.monitoring.rate_limiter import RateLimiter
from onramp.monitoring.tracker import Monitor
from onramp.store import keys
from onramp.store.base import KeyValueStore

logger = get_logger(__name__)

RATE_LIMIT_ENDPOINT = "process-payment"


class PaymentIntake:
    """Handles the synchronous card payment request.

    Args:
        settings: Amount bounds, fee rate and rate limits.
        gateway_settings: Used to detect missing gateway credentials.
        store: Shared store (client idempotency keys).
        ledger: Position ledger.
        gateway: Card payment gateway.
        orchestrator: Execution orchestrator.
        rate_limiter: Per-IP limiter.
        monitor: Metrics and error reports.
    """

    def __init__(
        self,
        settings: IntakeSettings,
        gateway_settings: GatewaySettings,
        store: KeyValueStore,
        ledger: PositionLedger,
        gateway: PaymentGateway,
        orchestrator: ExecutionOrchestrator,
        rate_limiter: RateLimiter,
        monitor: Monitor,
    ) -> None:
        self._settings = settings
        self._gateway_settings = gateway_settings
        self._store = store
        self._ledger = ledger
        self._gateway = gateway
        self._orchestrator = orchestrator
        self._rate_limiter = rate_limiter
        self._monitor = monitor
        self._fees = FeeCalculator(settings)

    async def process(self, body: Any, client_ip: str) -> dict[str, Any]:
        """Process one payment request.

        Args:
            body: Decoded JSON request body.
            client_ip: Caller identity for rate limiting.

        Returns:
            Response body for a 200.

        Raises:
            RateLimited, ValidationError, DuplicateRequest, GatewayError,
            GatewayTimeout, GatewayUnavailable, GatewayMisconfigured,
            StoreUnavailable: mapped to HTTP statuses at the API edge.
        """
        async with self._monitor.track(RATE_LIMIT_ENDPOINT, client_ip=client_ip):
            await self._check_rate_limit(client_ip)

            request = validate_payment_request(body, self._settings)
            try:
                self._orchestrator.validate_amount(request.strategy_type, request.amount)
            except BelowProtocolMinimum as e:
                raise ValidationError([e.user_message]) from e

            if not self._gateway_settings.is_configured:
                logger.error("gateway_not_configured")
                raise GatewayMisconfigured()

            payment_id = new_payment_id()
            with structlog.contextvars.bound_contextvars(payment_id=payment_id):
                await self._reserve_idempotency_key(request, payment_id)
                try:
                    position = await self._open_position(request, payment_id)
                except StoreUnavailable:
                    await self._release_idempotency_key(request)
                    raise
                return await self._charge_and_execute(request, position)

    async def _check_rate_limit(self, client_ip: str) -> None:
        result = await self._rate_limiter.check_and_increment(
            RATE_LIMIT_ENDPOINT,
            client_ip,
            self._settings.rate_limit_max_requests,
            self._settings.rate_limit_window_seconds,
        )
        if not result.allowed:
            retry_after = max(1, math.ceil(result.reset_at - time.time()))
            raise RateLimited(reset_at=result.reset_at, retry_after=retry_after)

    async def _reserve_idempotency_key(self, request: PaymentRequest, payment_id: str) -> None:
        if not request.idempotency_key:
            return
        key = keys.intake_request(request.idempotency_key)
        reserved = await self._store.set(
            key, payment_id, ttl=self._settings.idempotency_window_seconds, nx=True
        )
        if not reserved:
            existing = await self._store.get(key)
            logger.warning("duplicate_intake_request", existing_payment_id=existing)
            raise DuplicateRequest(payment_id=existing or "")

    async def _release_idempotency_key(self, request: PaymentRequest) -> None:
        """Free a reserved key so a retry after a pre-charge failure is not a duplicate."""
        if not request.idempotency_key:
            return
        try:
            await self._store.delete(keys.intake_request(request.idempotency_key))
        except StoreUnavailable:
            logger.warning("idempotency_key_not_released")

    async def _open_position(self, request: PaymentRequest, payment_id: str) -> Position:
        position = Position(
            position_id=new_position_id(),
            payment_id=payment_id,
            wallet_address=request.wallet_address,
            strategy_type=request.strategy_type,
            deposit_amount=request.amount,
            user_email=request.user_email,
        )
        await self._ledger.create_position(position)
        return position

    async def _charge_and_execute(
        self, request: PaymentRequest, position: Position
    ) -> dict[str, Any]:
        payment_id = position.payment_id
        charge_total = self._fees.charge_total(request.amount)
        charge = ChargeRequest(
            source_id=request.source_id,
            amount_minor=self._fees.to_minor_units(charge_total),
            currency=request.currency,
            idempotency_key=str(uuid4()),
            note=build_note(
                payment_id,
                request.wallet_address,
                request.strategy_type.value,
                request.amount,
                request.user_email,
            ),
        )
        logger.info(
            "charging_card",
            deposit=str(request.amount),
            charge_total=str(charge_total),
            strategy=request.strategy_type.value,
        )

        try:
            outcome = await self._gateway.create_payment(charge)
        except OnrampError as e:
            await self._record_gateway_failure(payment_id, e, PositionStatus.PENDING)
            raise

        if not isinstance(outcome, ChargeAccepted):
            error = GatewayError(outcome.code, outcome.message)
            await self._record_gateway_failure(payment_id, error, PositionStatus.FAILED)
            raise error

        position = await self._record_charge(position, outcome)

        execution: dict[str, Any] = {"claimed": False, "status": position.status.value}
        if outcome.status == GatewayPaymentStatus.COMPLETED.value:
            execution = await self._execute(position)

        return {
            "success": True,
            "payment_id": payment_id,
            "payment": {
                "id": outcome.gateway_payment_id,
                "status": outcome.status,
                "amount": str(self._fees.from_minor_units(outcome.amount_minor)),
                "currency": outcome.currency,
                "receipt_url": outcome.receipt_url,
            },
            "deposit_amount": str(request.amount),
            "execution": execution,
        }

    async def _record_charge(self, position: Position, outcome: ChargeAccepted) -> Position:
        try:
            await self._ledger.record_gateway_mapping(
                outcome.gateway_payment_id, position.payment_id
            )
        except StoreUnavailable:
            logger.warning(
                "gateway_mapping_write_failed",
                gateway_payment_id=outcome.gateway_payment_id,
                fallback="payment_note",
            )

        try:
            return await self._ledger.update_position(
                position.payment_id,
                gateway_payment_id=outcome.gateway_payment_id,
                charged_amount=self._fees.from_minor_units(outcome.amount_minor),
            )
        except StoreUnavailable:
            logger.warning("charge_record_write_failed")
            position.gateway_payment_id = outcome.gateway_payment_id
            return position

    async def _record_gateway_failure(
        self, payment_id: str, error: OnrampError, status: PositionStatus
    ) -> None:
        try:
            await self._ledger.update_status(payment_id, status, error=error.to_dict())
        except StoreUnavailable:
            logger.warning("gateway_failure_not_recorded", error_code=error.code)

    async def _execute(self, position: Position) -> dict[str, Any]:
        payment_id = position.payment_id
        try:
            claimed = await self._ledger.claim_execution(payment_id, Claimant.INTAKE)
        except StoreUnavailable:
            logger.warning("execution_claim_unavailable", fallback="webhook")
            return {"claimed": False, "status": position.status.value}

        if not claimed:
            return {"claimed": False, "status": position.status.value}

        try:
            result = await self._orchestrator.execute(
                position.wallet_address, position.deposit_amount, payment_id
            )
        except Exception:
            logger.exception("intake_execution_error")
            return {"claimed": True, "status": PositionStatus.FAILED.value}

        response: dict[str, Any] = {
            "claimed": True,
            "status": result.status.value,
            "tx_hashes": result.tx_hashes,
        }
        if result.error:
            response["error"] = result.error
        return response
