"""Agent-based simulation package."""

from .agents import BorrowerBasicPolicy, ChanceSampler, DecisionPolicy, PassivePolicy
from .engine import ABMEngine, build_engine
from .types import Actor, SimulationResult, StepOutput, TickContext

__all__ = [
    "ABMEngine",
    "build_engine",
    "Actor",
    "TickContext",
    "StepOutput",
    "SimulationResult",
    "DecisionPolicy",
    "BorrowerBasicPolicy",
    "PassivePolicy",
    "ChanceSampler",
]
