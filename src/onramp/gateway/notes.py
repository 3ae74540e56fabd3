"""Payment note codec.

The gateway stores a free-text note with each payment. We write the
internal payment id, wallet, strategy and deposit amount into it so the
webhook can recover the internal payment even if the gateway-id mapping
was never written.

Format: ``payment_id:<id> wallet:<addr> risk:<strategy> amount:<deposit> [email:<email>]``
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

# Separators inside a value would break space/colon tokenising
_UNSAFE = re.compile(r"[\s:]")


def _clean(value: str) -> str:
    return _UNSAFE.sub("", value)


@dataclass
class NoteFields:
    """Values recovered from a payment note. Any field may be missing."""

    payment_id: str | None = None
    wallet_address: str | None = None
    strategy: str | None = None
    amount: Decimal | None = None
    email: str | None = None

    @property
    def is_complete(self) -> bool:
        """True if a position can be rebuilt from the note alone."""
        return bool(
            self.payment_id and self.wallet_address and self.strategy and self.amount is not None
        )


def build_note(
    payment_id: str,
    wallet_address: str,
    strategy: str,
    amount: Decimal,
    email: str | None = None,
) -> str:
    parts = [
        f"payment_id:{_clean(payment_id)}",
        f"wallet:{_clean(wallet_address).lower()}",
        f"risk:{_clean(strategy)}",
        f"amount:{amount}",
    ]
    if email:
        parts.append(f"email:{_clean(email)}")
    return " ".join(parts)


def parse_note(note: str | None) -> NoteFields:
    """Parse a note written by build_note (also accepts ``paymentId:``)."""
    fields = NoteFields()
    if not note:
        return fields

    for part in note.split():
        key, sep, value = part.partition(":")
        if not sep or not value:
            continue
        if key in ("payment_id", "paymentId"):
            fields.payment_id = value
        elif key == "wallet":
            fields.wallet_address = value
        elif key == "risk":
            fields.strategy = value
        elif key == "amount":
            try:
                fields.amount = Decimal(value)
            except InvalidOperation:
                fields.amount = None
        elif key == "email":
            fields.email = value
    return fields
