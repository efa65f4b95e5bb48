"""Append-only per-tick metric series read from the ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from config.params import ONE_DAY_IN_SECS
from models.exchange import Exchange
from models.loan_manager import LoanManager

METRIC_COLUMNS = (
    "time",
    "day",
    "eth_price_acd",
    "total_acd",
    "interest_earned_pool",
    "interest_holding_pool",
    "reserve_acd",
    "reserve_eth",
    "collateral_held",
    "open_loans_acd",
    "defaulted_loans_acd",
    "net_acd_demand",
    "acd_demand_pct",
    "open_loan_count",
)


def observe(manager: LoanManager, exchange: Exchange) -> dict[str, float]:
    """Read one row of metrics. Never mutates state."""
    ledger = manager.ledger
    pools = ledger.pools
    now = manager.clock.get_time()
    total_acd = ledger.total_acd
    net_demand = exchange.net_acd_demand
    reserve = ledger.account(manager.reserve_id)
    return {
        "time": now,
        "day": float(now // ONE_DAY_IN_SECS),
        "eth_price_acd": manager.rates.eth_price_acd,
        "total_acd": total_acd,
        "interest_earned_pool": pools.interest_earned_pool,
        "interest_holding_pool": pools.interest_holding_pool,
        "reserve_acd": reserve.acd,
        "reserve_eth": reserve.eth,
        "collateral_held": pools.collateral_held,
        "open_loans_acd": pools.open_loans_acd,
        "defaulted_loans_acd": pools.defaulted_loans_acd,
        "net_acd_demand": net_demand,
        "acd_demand_pct": net_demand / total_acd if total_acd > 0 else 0.0,
        "open_loan_count": float(len(manager.open_loans())),
    }


@dataclass
class MetricsRecorder:
    rows: list[dict[str, Any]] = field(default_factory=list)

    def record(self, row: dict[str, Any]) -> None:
        self.rows.append(dict(row))

    def as_arrays(self) -> dict[str, np.ndarray]:
        return {
            name: np.asarray([row[name] for row in self.rows], dtype=float)
            for name in METRIC_COLUMNS
        }

    def __len__(self) -> int:
        return len(self.rows)
