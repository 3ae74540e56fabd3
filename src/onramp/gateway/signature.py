"""Webhook signature verification (HMAC-SHA256, base64)."""

import base64
import hashlib
import hmac


def compute_signature(signature_key: str, body: bytes, notification_url: str = "") -> str:
    """Signature the gateway sends for ``body``.

    The gateway signs the notification URL followed by the raw body. With an
    empty URL this reduces to an HMAC over the body alone.
    """
    message = notification_url.encode() + body
    digest = hmac.new(signature_key.encode(), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_signature(
    signature_key: str,
    body: bytes,
    signature: str | None,
    notification_url: str = "",
) -> bool:
    """Constant-time check of ``signature`` against the expected value."""
    if not signature or not signature_key:
        return False
    expected = compute_signature(signature_key, body, notification_url)
    return hmac.compare_digest(expected.encode(), signature.encode())
