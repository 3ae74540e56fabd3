"""Shared data models for the card onramp service.

CRITICAL: All monetary values use Decimal. Never use float for deposit amounts,
charge totals, token amounts or prices. Timestamps are Unix seconds (float).
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4


class StrategyType(str, Enum):
    """Where a deposit is routed after funding."""

    CONSERVATIVE = "conservative"
    LEVERAGED = "leveraged"


class PositionStatus(str, Enum):
    """Position lifecycle: pending -> executing -> active | failed."""

    PENDING = "pending"
    EXECUTING = "executing"
    ACTIVE = "active"
    CLOSED = "closed"
    FAILED = "failed"


class Claimant(str, Enum):
    """Which path won the right to execute a payment."""

    INTAKE = "intake"
    WEBHOOK = "webhook"
    OPERATOR = "operator"


class GatewayPaymentStatus(str, Enum):
    """Payment statuses reported by the gateway."""

    APPROVED = "APPROVED"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    FAILED = "FAILED"


def new_payment_id() -> str:
    """Internal payment id, generated before any external call."""
    return f"pay_{uuid4().hex}"


def new_position_id() -> str:
    return f"pos_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


# Position fields stored as Decimal strings in the ledger
_DECIMAL_FIELDS = {
    "deposit_amount",
    "charged_amount",
    "supply_amount",
    "order_size_usd",
    "order_collateral_usd",
    "order_leverage",
    "entry_price",
}


@dataclass
class Position:
    """A user deposit and everything the orchestrator did with it."""

    position_id: str
    payment_id: str
    wallet_address: str
    strategy_type: StrategyType
    deposit_amount: Decimal
    status: PositionStatus = PositionStatus.PENDING
    user_email: str | None = None
    gateway_payment_id: str | None = None
    charged_amount: Decimal | None = None  # gateway total incl. fee, informational
    funding_tx_hash: str | None = None
    gas_tx_hash: str | None = None
    approval_tx_hash: str | None = None
    supply_tx_hash: str | None = None
    supply_amount: Decimal | None = None
    order_tx_hash: str | None = None
    order_id: str | None = None
    order_size_usd: Decimal | None = None
    order_collateral_usd: Decimal | None = None
    order_leverage: Decimal | None = None
    entry_price: Decimal | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    executed_at: float | None = None
    closed_at: float | None = None
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-safe primitives (Decimals as strings)."""
        data = asdict(self)
        data["strategy_type"] = self.strategy_type.value
        data["status"] = self.status.value
        for name in _DECIMAL_FIELDS:
            if data[name] is not None:
                data[name] = str(data[name])
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Position:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["strategy_type"] = StrategyType(values["strategy_type"])
        values["status"] = PositionStatus(values.get("status", PositionStatus.PENDING))
        for name in _DECIMAL_FIELDS:
            if values.get(name) is not None:
                values[name] = Decimal(str(values[name]))
        return cls(**values)


@dataclass
class ExecutionClaim:
    """Record of who owns execution for a payment. Created at most once."""

    claimed_by: Claimant
    claimed_at: float = field(default_factory=time.time)
    outcome: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "claimed_by": self.claimed_by.value,
            "claimed_at": self.claimed_at,
            "outcome": self.outcome,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionClaim:
        return cls(
            claimed_by=Claimant(data["claimed_by"]),
            claimed_at=float(data["claimed_at"]),
            outcome=data.get("outcome"),
        )


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    remaining: int
    reset_at: float  # Unix seconds
    limit: int


@dataclass
class PaymentRequest:
    """A validated intake request."""

    source_id: str
    amount: Decimal
    currency: str
    wallet_address: str
    strategy_type: StrategyType
    user_email: str | None = None
    idempotency_key: str | None = None


@dataclass
class ChargeRequest:
    """Parameters for a gateway charge."""

    source_id: str
    amount_minor: int  # cents
    currency: str
    idempotency_key: str
    note: str


@dataclass
class ChargeAccepted:
    """Gateway created the payment."""

    gateway_payment_id: str
    status: str
    amount_minor: int
    currency: str
    receipt_url: str | None = None


@dataclass
class ChargeDeclined:
    """Gateway rejected the charge with an error code."""

    code: str
    detail: str
    message: str  # human-readable, safe to show


ChargeOutcome = ChargeAccepted | ChargeDeclined


@dataclass
class TxReceipt:
    """Minimal view of a mined transaction."""

    tx_hash: str
    succeeded: bool
    block_number: int | None = None
    gas_used: int | None = None


class StepStatus(str, Enum):
    """What happened to a single execution step."""

    SKIPPED = "skipped"  # already recorded on the position
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of a single orchestrator step."""

    name: str
    status: StepStatus
    tx_hash: str | None = None
    error: dict[str, Any] | None = None


@dataclass
class ExecutionResult:
    """Outcome of running the orchestrator for one payment."""

    payment_id: str
    success: bool
    status: PositionStatus
    steps: list[StepResult] = field(default_factory=list)
    error: dict[str, Any] | None = None

    @property
    def tx_hashes(self) -> dict[str, str]:
        return {s.name: s.tx_hash for s in self.steps if s.tx_hash}
