"""Square Payments API client."""

import asyncio
from typing import Any

import aiohttp

from onramp.config import GatewaySettings
from onramp.exceptions import GatewayMisconfigured, GatewayTimeout, GatewayUnavailable
from onramp.gateway.client import PaymentGateway
from onramp.logging import get_logger
from onramp.models import ChargeAccepted, ChargeDeclined, ChargeOutcome, ChargeRequest

logger = get_logger(__name__)

DECLINE_MESSAGES: dict[str, str] = {
    "CARD_DECLINED": "Your card was declined. Please try a different card.",
    "GENERIC_DECLINE": "Your card was declined. Please try a different card.",
    "INSUFFICIENT_FUNDS": "Insufficient funds on card. Please use a different card.",
    "CVV_FAILURE": "Card security code (CVV) is incorrect.",
    "VERIFY_CVV_FAILURE": "Card security code (CVV) is incorrect.",
    "ADDRESS_VERIFICATION_FAILURE": "Billing address verification failed. Please check your postal code.",
    "VERIFY_AVS_FAILURE": "Billing address verification failed. Please check your postal code.",
    "INVALID_POSTAL_CODE": "Billing postal code is invalid.",
    "INVALID_EXPIRATION": "Card expiration date is invalid.",
    "CARD_EXPIRED": "Your card has expired. Please use a different card.",
    "INVALID_CARD": "Card details are invalid. Please check and try again.",
    "INVALID_CARD_DATA": "Card details are invalid. Please check and try again.",
    "TRANSACTION_LIMIT": "This amount exceeds your card's transaction limit.",
    "CARD_DECLINED_VERIFICATION_REQUIRED": "Your bank requires additional verification for this card.",
    "IDEMPOTENCY_KEY_REUSED": "This payment was already submitted.",
}

DEFAULT_DECLINE_MESSAGE = "Payment could not be processed. Please try again."


def decline_message(code: str) -> str:
    return DECLINE_MESSAGES.get(code, DEFAULT_DECLINE_MESSAGE)


class SquareGateway(PaymentGateway):
    """PaymentGateway for Square (``POST /v2/payments``).

    Args:
        settings: Access token, location, environment, API version, timeout.
    """

    def __init__(self, settings: GatewaySettings) -> None:
        self._settings = settings
        self._timeout = aiohttp.ClientTimeout(total=settings.timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.access_token.get_secret_value()}",
            "Square-Version": self._settings.api_version,
            "Content-Type": "application/json",
        }

    async def create_payment(self, request: ChargeRequest) -> ChargeOutcome:
        if not self._settings.is_configured:
            raise GatewayMisconfigured()

        payload = {
            "source_id": request.source_id,
            "idempotency_key": request.idempotency_key,
            "amount_money": {"amount": request.amount_minor, "currency": request.currency},
            "location_id": self._settings.location_id,
            "autocomplete": True,
            "note": request.note,
        }
        url = f"{self._settings.base_url}/v2/payments"

        try:
            session = self._get_session()
            async with session.post(url, json=payload, headers=self._headers()) as response:
                status = response.status
                body: dict[str, Any] = await response.json(content_type=None) or {}
        except asyncio.TimeoutError as e:
            logger.error(
                "gateway_timeout",
                timeout=self._settings.timeout_seconds,
                idempotency_key=request.idempotency_key,
            )
            raise GatewayTimeout() from e
        except aiohttp.ClientError as e:
            logger.error("gateway_request_failed", error=str(e))
            raise GatewayUnavailable() from e

        if status in (401, 403):
            logger.error("gateway_auth_rejected", status=status)
            raise GatewayMisconfigured()
        if status >= 500:
            logger.error("gateway_server_error", status=status)
            raise GatewayUnavailable()

        if status >= 400 or body.get("errors"):
            error = (body.get("errors") or [{}])[0]
            code = error.get("code") or "UNKNOWN"
            detail = error.get("detail") or f"Square API error: {status}"
            logger.warning("gateway_charge_declined", status=status, code=code, detail=detail)
            return ChargeDeclined(code=code, detail=detail, message=decline_message(code))

        payment = body.get("payment") or {}
        amount_money = payment.get("total_money") or payment.get("amount_money") or {}
        accepted = ChargeAccepted(
            gateway_payment_id=payment["id"],
            status=payment.get("status", ""),
            amount_minor=int(amount_money.get("amount", request.amount_minor)),
            currency=amount_money.get("currency", request.currency),
            receipt_url=payment.get("receipt_url"),
        )
        logger.info(
            "gateway_charge_accepted",
            gateway_payment_id=accepted.gateway_payment_id,
            status=accepted.status,
            amount_minor=accepted.amount_minor,
        )
        return accepted

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
