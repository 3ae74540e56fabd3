"""Payment request validation.

Collects every field error instead of stopping at the first, so the client
can fix the whole form in one round trip.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from onramp.config import IntakeSettings
from onramp.exceptions import ValidationError
from onramp.models import PaymentRequest, StrategyType

WALLET_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
MAX_EMAIL_LENGTH = 254
MAX_IDEMPOTENCY_KEY_LENGTH = 128
MAX_AMOUNT_DECIMALS = 2

# Older clients send risk profile names
STRATEGY_ALIASES = {
    "conservative": StrategyType.CONSERVATIVE,
    "leveraged": StrategyType.LEVERAGED,
    "aggressive": StrategyType.LEVERAGED,
}


def parse_amount(value: Any) -> Decimal | None:
    """Parse a JSON number or numeric string into a finite Decimal."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def validate_payment_request(body: Any, settings: IntakeSettings) -> PaymentRequest:
    """Validate a raw intake body.

    Args:
        body: Decoded JSON body.
        settings: Amount bounds and supported currency.

    Returns:
        PaymentRequest with normalised values (lowercase wallet, Decimal amount).

    Raises:
        ValidationError: Listing every invalid field.
    """
    if not isinstance(body, dict):
        raise ValidationError(["Request body must be a JSON object"])

    errors: list[str] = []

    source_id = body.get("source_id") or body.get("sourceId")
    if not isinstance(source_id, str) or not source_id.strip():
        errors.append("source_id is required")

    amount = parse_amount(body.get("amount"))
    if amount is None:
        errors.append("amount must be a number")
    elif amount < settings.min_amount or amount > settings.max_amount:
        errors.append(
            f"amount must be between {settings.min_amount} and {settings.max_amount}"
        )
    elif -amount.as_tuple().exponent > MAX_AMOUNT_DECIMALS:
        errors.append("amount must have at most 2 decimal places")

    currency = body.get("currency", settings.currency)
    if not isinstance(currency, str) or currency.upper() != settings.currency:
        errors.append(f"currency must be {settings.currency}")

    wallet = body.get("wallet_address") or body.get("walletAddress")
    if not isinstance(wallet, str) or not WALLET_RE.match(wallet):
        errors.append("wallet_address must be a 0x-prefixed 40 hex character address")

    email = body.get("user_email") or body.get("email")
    if email is not None and email != "":
        if (
            not isinstance(email, str)
            or len(email) > MAX_EMAIL_LENGTH
            or not EMAIL_RE.match(email)
        ):
            errors.append("user_email is not a valid email address")
    else:
        email = None

    raw_strategy = body.get("strategy_type") or body.get("risk_profile")
    strategy = (
        STRATEGY_ALIASES.get(raw_strategy.lower()) if isinstance(raw_strategy, str) else None
    )
    if strategy is None:
        errors.append("strategy_type must be 'conservative' or 'leveraged'")

    idempotency_key = body.get("idempotency_key")
    if idempotency_key is not None and (
        not isinstance(idempotency_key, str)
        or not idempotency_key.strip()
        or len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH
    ):
        errors.append("idempotency_key must be a non-empty string of at most 128 characters")
        idempotency_key = None

    if errors:
        raise ValidationError(errors)

    return PaymentRequest(
        source_id=source_id.strip(),
        amount=amount,
        currency=settings.currency,
        wallet_address=wallet.lower(),
        strategy_type=strategy,
        user_email=email,
        idempotency_key=idempotency_key,
    )
