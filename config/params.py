"""
Simulation parameters for the ACD stablecoin economy.
Defaults follow the reference borrower profile and loan product.
Environment overrides (ACD_SIM_*) are applied by load_config().
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping

ONE_DAY_IN_SECS = 24 * 60 * 60
ENV_PREFIX = "ACD_SIM_"


@dataclass(frozen=True)
class LoanProductParams:
    """Terms of a single loan product."""
    minimum_loan_in_acd: float = 100.0
    loan_collateral_ratio: float = 0.6
    # Loan value per unit of collateral value; ETH locked = amount * eth_to_acd / ratio
    interest_pt: float = 0.10
    # Nominal annual rate, compounded over the repayment period
    repayment_period_in_days: float = 30.0
    default_fee_percentage: float = 0.05

    def __post_init__(self):
        if self.minimum_loan_in_acd < 0:
            raise ValueError("minimum_loan_in_acd must be non-negative")
        if self.loan_collateral_ratio <= 0:
            raise ValueError("loan_collateral_ratio must be positive")
        if self.interest_pt <= -1.0:
            raise ValueError("interest_pt must be greater than -1")
        if self.repayment_period_in_days <= 0:
            raise ValueError("repayment_period_in_days must be positive")
        if self.default_fee_percentage < 0:
            raise ValueError("default_fee_percentage must be non-negative")


@dataclass(frozen=True)
class BorrowerParams:
    """Basic borrower behaviour."""
    repay_x_days_before: float = 1.0
    buy_acd_x_days_before_repay: float = 1.0
    repayment_cost_acd: float = 5.0
    wants_to_borrow_amount: float = 10_000.0
    # How much they want to borrow
    wants_to_borrow_amount_growth_pa: float = 0.1
    chance_to_take_loan: float = 1.0
    # Daily chance to take a loan when there is no open loan
    chance_to_sell_all_acd: float = 1.0
    # Daily chance to sell all ACD unless repayment is due soon
    interest_sensitivity: float = 2.0
    # market_chance = market_rate / (product_rate * interest_sensitivity)
    initial_acd: float = 0.0
    initial_eth: float = 50_000.0

    def __post_init__(self):
        for name in ("chance_to_take_loan", "chance_to_sell_all_acd"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1]")
        if self.interest_sensitivity <= 0:
            raise ValueError("interest_sensitivity must be positive")
        if self.initial_acd < 0 or self.initial_eth < 0:
            raise ValueError("initial balances must be non-negative")


@dataclass(frozen=True)
class ExchangeParams:
    """ETH/ACD market assumptions."""
    initial_eth_price_acd: float = 1.0
    exchange_fee_percentage: float = 0.003
    eth_annual_drift: float = 0.0
    eth_annual_vol: float = 0.0
    # 0.0 keeps the rate flat; ETH is typically ~0.6-0.8 annualized
    market_maker_acd: float = 1_000_000.0
    market_maker_eth: float = 1_000_000.0

    def __post_init__(self):
        if self.initial_eth_price_acd <= 0:
            raise ValueError("initial_eth_price_acd must be positive")
        if not 0.0 <= self.exchange_fee_percentage < 1.0:
            raise ValueError("exchange_fee_percentage must be within [0, 1)")
        if self.eth_annual_vol < 0:
            raise ValueError("eth_annual_vol must be non-negative")


@dataclass(frozen=True)
class MarketParams:
    """Market-wide lending conditions."""
    market_loan_interest_rate: float = 0.14
    max_open_loans_acd: float = math.inf
    # System-wide cap on outstanding repayment value


@dataclass(frozen=True)
class SimulationConfig:
    """Run configuration."""
    time_step_seconds: int = 4 * 60 * 60
    n_days: int = 365
    n_borrowers: int = 10
    seed: int = 42
    reserve_acd: float = 0.0
    reserve_eth: float = 0.0

    def __post_init__(self):
        if self.time_step_seconds <= 0 or ONE_DAY_IN_SECS % self.time_step_seconds:
            raise ValueError("time_step_seconds must be a positive divisor of one day")
        if self.n_days < 0 or self.n_borrowers < 0:
            raise ValueError("n_days and n_borrowers must be non-negative")

    @property
    def steps_per_day(self) -> int:
        return ONE_DAY_IN_SECS // self.time_step_seconds

    @property
    def n_steps(self) -> int:
        return self.n_days * self.steps_per_day


def _coerce(raw: str, current, name: str):
    try:
        if isinstance(current, bool):
            return raw.strip().lower() in {"1", "true", "yes", "on"}
        if isinstance(current, int):
            return int(raw)
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be numeric, got {raw!r}") from exc


def _apply_env(params, env: Mapping[str, str]):
    updates = {}
    for f in fields(params):
        name = ENV_PREFIX + f.name.upper()
        if name in env and env[name] != "":
            updates[f.name] = _coerce(env[name], getattr(params, f.name), name)
    return replace(params, **updates) if updates else params


# Convenient default instances
LOAN_PRODUCT = LoanProductParams()
BORROWER = BorrowerParams()
EXCHANGE = ExchangeParams()
MARKET = MarketParams()
SIM_CONFIG = SimulationConfig()


def load_config(env: Mapping[str, str] | None = None, **overrides) -> dict:
    """
    Build every parameter record, applying ACD_SIM_* overrides.

    Field names map to upper-cased variables, e.g. ACD_SIM_SEED,
    ACD_SIM_N_DAYS, ACD_SIM_MARKET_LOAN_INTEREST_RATE. The environment is
    applied to the default records first; keyword overrides then replace
    whole records and take precedence (e.g. sim_config=SimulationConfig(n_days=10)).

    Returns dict with keys: loan_product, borrower, exchange, market, sim_config.
    """
    env = os.environ if env is None else env
    defaults = {
        "loan_product": LOAN_PRODUCT,
        "borrower": BORROWER,
        "exchange": EXCHANGE,
        "market": MARKET,
        "sim_config": SIM_CONFIG,
    }
    unknown = set(overrides) - set(defaults)
    if unknown:
        raise ValueError(f"Unknown parameter groups: {sorted(unknown)}")
    params = {key: _apply_env(value, env) for key, value in defaults.items()}
    params.update(overrides)
    return params
