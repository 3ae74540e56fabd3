"""Payment gateway layer -- Square charges, payment notes, webhook signatures."""

from onramp.gateway.client import PaymentGateway
from onramp.gateway.notes import NoteFields, build_note, parse_note
from onramp.gateway.signature import compute_signature, verify_signature
from onramp.gateway.square_client import SquareGateway, decline_message

__all__ = [
    "NoteFields",
    "PaymentGateway",
    "SquareGateway",
    "build_note",
    "compute_signature",
    "decline_message",
    "parse_note",
    "verify_signature",
]
