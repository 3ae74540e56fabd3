"""Gateway webhook reconciliation.

The webhook is the backstop for the synchronous intake path: if intake
crashed, timed out or lost the mapping write after the card was charged,
the completed-payment event still gets the deposit executed. Both paths
race for the same execution claim, so whichever arrives first executes and
the other becomes a no-op.

Resolution order for the internal payment:
1. gateway id mapping (``square_to_frontend:{gateway_id}``)
2. ``payment_id`` parsed from the payment note
3. a Position rebuilt from a complete note, when the ledger has none
"""

from __future__ import annotations

import json
import time
from typing import Any

import structlog

from onramp.config import GatewaySettings
from onramp.exceptions import MappingMissing, PositionExists, SignatureInvalid
from onramp.execution.orchestrator import ExecutionOrchestrator
from onramp.gateway.notes import NoteFields, parse_note
from onramp.gateway.signature import verify_signature
from onramp.ledger import PositionLedger
from onramp.logging import get_logger
from onramp.models import (
    Claimant,
    GatewayPaymentStatus,
    Position,
    StrategyType,
    new_position_id,
)
from onramp.monitoring.tracker import Monitor
from onramp.store import keys
from onramp.store.base import KeyValueStore

logger = get_logger(__name__)

HANDLED_EVENT_TYPES = frozenset({"payment.updated", "payment.completed"})


class WebhookReconciler:
    """Verifies gateway notifications and drives execution for completed payments.

    Args:
        settings: Signature key and notification URL.
        store: Shared store (event records).
        ledger: Position ledger.
        orchestrator: Execution orchestrator.
        monitor: Metrics, error reports and operator alerts.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        store: KeyValueStore,
        ledger: PositionLedger,
        orchestrator: ExecutionOrchestrator,
        monitor: Monitor,
    ) -> None:
        self._settings = settings
        self._store = store
        self._ledger = ledger
        self._orchestrator = orchestrator
        self._monitor = monitor

    async def handle(self, raw_body: bytes, signature: str | None) -> dict[str, Any]:
        """Process one webhook delivery.

        Args:
            raw_body: Exact request bytes (the signature covers them).
            signature: Value of the ``x-square-hmacsha256-signature`` header.

        Returns:
            Response body for a 200. Every outcome other than a bad signature
            or an unrecordable event is acknowledged so the gateway stops
            retrying.

        Raises:
            SignatureInvalid: Missing or mismatched signature.
            StoreUnavailable: The event could not be recorded; the gateway
                should redeliver.
        """
        async with self._monitor.track("square-webhook"):
            if not verify_signature(
                self._settings.webhook_signature_key.get_secret_value(),
                raw_body,
                signature,
                self._settings.webhook_notification_url,
            ):
                logger.warning("webhook_signature_invalid", has_signature=bool(signature))
                raise SignatureInvalid()

            try:
                event = json.loads(raw_body)
            except ValueError:
                logger.warning("webhook_body_not_json")
                return {"received": True, "status": "ignored", "reason": "invalid_json"}
            if not isinstance(event, dict):
                return {"received": True, "status": "ignored", "reason": "invalid_json"}

            event_id = _text(event.get("event_id"))
            event_type = _text(event.get("type"))
            with structlog.contextvars.bound_contextvars(
                webhook_event_id=event_id, webhook_event_type=event_type
            ):
                await self._record_event(event_id, event_type)

                if event_type not in HANDLED_EVENT_TYPES:
                    logger.info("webhook_event_ignored")
                    return {"received": True, "status": "ignored", "reason": "event_type"}

                payment = _extract_payment(event)
                if not payment:
                    logger.warning("webhook_payment_missing")
                    return {"received": True, "status": "ignored", "reason": "no_payment"}
                status = payment.get("status")
                if status != GatewayPaymentStatus.COMPLETED.value:
                    logger.info("webhook_payment_not_completed", payment_status=status)
                    return {"received": True, "status": "ignored", "reason": "not_completed"}

                gateway_payment_id = _text(payment.get("id"))
                try:
                    position = await self._resolve_position(gateway_payment_id, payment)
                except MappingMissing:
                    await self._monitor.alert(
                        "Completed payment could not be matched to a deposit",
                        gateway_payment_id=gateway_payment_id,
                        event_id=event_id,
                    )
                    return {"received": True, "status": "unmatched"}

                return await self._execute(position, gateway_payment_id)

    async def _record_event(self, event_id: str, event_type: str) -> None:
        if not event_id:
            return
        record = {"type": event_type, "received_at": time.time()}
        first_delivery = await self._store.set_json(
            keys.webhook_event(event_id), record, ttl=keys.WEBHOOK_EVENT_TTL, nx=True
        )
        if not first_delivery:
            # Still processed: the earlier delivery may have failed before claiming
            logger.info("webhook_event_redelivered")

    async def _resolve_position(
        self, gateway_payment_id: str, payment: dict[str, Any]
    ) -> Position:
        """Find (or rebuild) the position for a completed gateway payment.

        Raises:
            MappingMissing: Neither the mapping nor the note identifies a payment.
        """
        payment_id = None
        if gateway_payment_id:
            payment_id = await self._ledger.resolve_payment_id(gateway_payment_id)

        note = parse_note(_text(payment.get("note")) or None)
        if payment_id is None and note.payment_id:
            logger.info(
                "webhook_mapping_from_note",
                gateway_payment_id=gateway_payment_id,
                payment_id=note.payment_id,
            )
            payment_id = note.payment_id

        if payment_id is None:
            raise MappingMissing(gateway_payment_id=gateway_payment_id)

        position = await self._ledger.get_by_internal_id(payment_id)
        if position is None:
            position = await self._rebuild_from_note(payment_id, note, gateway_payment_id)

        if gateway_payment_id:
            await self._ledger.record_gateway_mapping(gateway_payment_id, payment_id)
            if position.gateway_payment_id != gateway_payment_id:
                position = await self._ledger.update_position(
                    payment_id, gateway_payment_id=gateway_payment_id
                )
        return position

    async def _rebuild_from_note(
        self, payment_id: str, note: NoteFields, gateway_payment_id: str
    ) -> Position:
        strategy = _strategy_from_note(note.strategy)
        if not note.is_complete or strategy is None:
            raise MappingMissing(payment_id=payment_id, gateway_payment_id=gateway_payment_id)

        position = Position(
            position_id=new_position_id(),
            payment_id=payment_id,
            wallet_address=note.wallet_address.lower(),
            strategy_type=strategy,
            deposit_amount=note.amount,
            user_email=note.email,
            gateway_payment_id=gateway_payment_id or None,
        )
        try:
            await self._ledger.create_position(position)
        except PositionExists:
            # Intake wrote it between our read and create
            existing = await self._ledger.get_by_internal_id(payment_id)
            if existing is None:
                raise
            return existing
        logger.warning(
            "position_rebuilt_from_note",
            payment_id=payment_id,
            gateway_payment_id=gateway_payment_id,
        )
        return position

    async def _execute(self, position: Position, gateway_payment_id: str) -> dict[str, Any]:
        payment_id = position.payment_id
        claimed = await self._ledger.claim_execution(payment_id, Claimant.WEBHOOK)
        if not claimed:
            return {"received": True, "status": "already_claimed", "payment_id": payment_id}

        logger.info(
            "webhook_execution_started",
            payment_id=payment_id,
            gateway_payment_id=gateway_payment_id,
        )
        try:
            result = await self._orchestrator.execute(
                position.wallet_address, position.deposit_amount, payment_id
            )
        except Exception:
            logger.exception("webhook_execution_error", payment_id=payment_id)
            return {"received": True, "status": "execution_error", "payment_id": payment_id}

        return {
            "received": True,
            "status": result.status.value,
            "payment_id": payment_id,
            "tx_hashes": result.tx_hashes,
        }


def _extract_payment(event: dict[str, Any]) -> dict[str, Any]:
    """Return ``data.object.payment``, or an empty dict if any level is not an object."""
    node: Any = event
    for name in ("data", "object", "payment"):
        node = node.get(name)
        if not isinstance(node, dict):
            return {}
    return node


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _strategy_from_note(value: str | None) -> StrategyType | None:
    if not value:
        return None
    value = value.lower()
    if value == "aggressive":
        return StrategyType.LEVERAGED
    try:
        return StrategyType(value)
    except ValueError:
        return None
