"""Execution layer -- wallet funding, strategies and the orchestrator."""

from onramp.execution.orchestrator import ExecutionOrchestrator
from onramp.execution.steps import StepRunner
from onramp.execution.strategies import (
    ConservativeStrategy,
    LeveragedStrategy,
    Strategy,
    derive_order_id,
)

__all__ = [
    "ConservativeStrategy",
    "ExecutionOrchestrator",
    "LeveragedStrategy",
    "StepRunner",
    "Strategy",
    "derive_order_id",
]
