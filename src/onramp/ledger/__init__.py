"""Position ledger -- positions, gateway mappings and execution claims."""

from onramp.ledger.ledger import PositionLedger

__all__ = ["PositionLedger"]
