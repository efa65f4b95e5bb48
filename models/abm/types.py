"""Typed dataclasses for ABM actors, tick context, and outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from config.params import MarketParams
from models.clock import TickMeta

if TYPE_CHECKING:
    from models.exchange import Exchange, RateFeed
    from models.loan_manager import LoanManager

    from .agents import ChanceSampler, DecisionPolicy


@dataclass
class Actor:
    """Simulation participant: an identity plus its decision policy."""

    actor_id: str
    policy: "DecisionPolicy"


@dataclass(frozen=True)
class TickContext:
    """Everything a policy may read or call during one tick."""

    meta: TickMeta
    loan_manager: "LoanManager"
    exchange: "Exchange"
    rates: "RateFeed"
    market: MarketParams
    sampler: "ChanceSampler"

    @property
    def ledger(self):
        return self.loan_manager.ledger


@dataclass(frozen=True)
class StepOutput:
    """What happened during a single tick."""

    iteration: int
    current_time: float
    loans_taken: int
    loans_repaid: int
    loans_defaulted: int


@dataclass
class SimulationResult:
    """Per-tick metric series plus the final ledger snapshot."""

    metrics: dict[str, np.ndarray]
    final_snapshot: dict[str, Any]
    n_steps: int
    loans_taken: int = 0
    loans_repaid: int = 0
    loans_defaulted: int = 0
    warnings: list[str] = field(default_factory=list)
