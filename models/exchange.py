"""
ETH/ACD rate feed and a market-maker exchange for buying and selling ACD.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from config.params import ExchangeParams
from models.ledger import Ledger
from models.price_simulation import GBMSimulator

LOGGER = logging.getLogger(__name__)


class RateFeed:
    """
    Per-iteration ETH price quoted in ACD.

    `eth_to_acd` is the ETH value of one ACD (1 / eth_price_acd); it is the
    rate used for collateral sizing and default fees.
    """

    def __init__(self, eth_price_path: np.ndarray | list[float]):
        path = np.asarray(eth_price_path, dtype=float).reshape(-1)
        if path.size == 0:
            raise ValueError("eth_price_path must not be empty")
        if not np.all(np.isfinite(path)) or np.any(path <= 0.0):
            raise ValueError("eth_price_path must contain positive finite prices")
        self._path = path
        self._index = 0

    @classmethod
    def constant(cls, eth_price_acd: float = 1.0) -> "RateFeed":
        return cls([eth_price_acd])

    @classmethod
    def from_gbm(cls, params: ExchangeParams, n_steps: int, time_step_seconds: float,
                 rng: np.random.Generator | None = None) -> "RateFeed":
        sim = GBMSimulator(mu=params.eth_annual_drift, sigma=params.eth_annual_vol)
        path = sim.simulate_path(
            params.initial_eth_price_acd,
            n_steps=n_steps,
            dt=GBMSimulator.year_fraction(time_step_seconds),
            rng=rng,
        )
        return cls(path)

    def advance(self, iteration: int) -> float:
        """Move to the price for `iteration`; holds the last price past the end."""
        self._index = int(np.clip(iteration, 0, self._path.size - 1))
        return self.eth_price_acd

    @property
    def path(self) -> np.ndarray:
        return self._path.copy()

    @property
    def eth_price_acd(self) -> float:
        return float(self._path[self._index])

    @property
    def eth_to_acd(self) -> float:
        return 1.0 / self.eth_price_acd

    def convert_eth_to_acd(self, eth_amount: float) -> float:
        return float(eth_amount) * self.eth_price_acd

    def convert_acd_to_eth(self, acd_amount: float) -> float:
        return float(acd_amount) / self.eth_price_acd


@dataclass(frozen=True)
class TradeResult:
    """Outcome of one exchange order."""
    side: str
    actor_id: str
    acd_amount: float
    # ACD delivered to the buyer or taken from the seller
    eth_amount: float
    fee_acd: float

    @property
    def filled(self) -> bool:
        return self.acd_amount > 0.0


class Exchange:
    """
    Fills ACD orders against a market-maker actor at the feed rate.

    Fees are retained by the market maker. Orders are capped by what the
    actor can pay and what the market maker holds; an order that cannot be
    filled at all returns an empty TradeResult.
    """

    def __init__(self, ledger: Ledger, rates: RateFeed, market_maker_id: str,
                 fee_percentage: float = 0.0):
        if not 0.0 <= fee_percentage < 1.0:
            raise ValueError("fee_percentage must be within [0, 1)")
        ledger.account(market_maker_id)
        self.ledger = ledger
        self.rates = rates
        self.market_maker_id = market_maker_id
        self.fee_percentage = float(fee_percentage)
        self.acd_bought = 0.0
        self.acd_sold = 0.0

    @property
    def net_acd_demand(self) -> float:
        return self.acd_bought - self.acd_sold

    def sell_acd(self, actor_id: str, acd_amount: float) -> TradeResult:
        """Sell ACD for ETH."""
        actor = self.ledger.account(actor_id)
        maker = self.ledger.account(self.market_maker_id)
        keep = 1.0 - self.fee_percentage

        amount = min(max(float(acd_amount), 0.0), max(actor.acd, 0.0))
        max_by_maker = self.rates.convert_eth_to_acd(max(maker.eth, 0.0)) / keep
        amount = min(amount, max_by_maker)
        if amount <= 0.0:
            LOGGER.info("sell_acd() nothing filled for %s (requested %.4f)", actor_id, acd_amount)
            return TradeResult("sell", actor_id, 0.0, 0.0, 0.0)

        eth_out = self.rates.convert_acd_to_eth(amount * keep)
        with self.ledger.atomic():
            self.ledger.transfer_acd(actor_id, self.market_maker_id, amount)
            self.ledger.transfer_eth(self.market_maker_id, actor_id, eth_out)
        self.acd_sold += amount
        LOGGER.debug("%s sold %.4f ACD for %.6f ETH", actor_id, amount, eth_out)
        return TradeResult("sell", actor_id, amount, eth_out, amount * self.fee_percentage)

    def buy_acd(self, actor_id: str, acd_amount: float) -> TradeResult:
        """
        Buy ACD with ETH.

        `acd_amount` is the gross order; the actor receives it net of the
        exchange fee, so callers gross up by 1 / (1 - fee).
        """
        actor = self.ledger.account(actor_id)
        maker = self.ledger.account(self.market_maker_id)
        keep = 1.0 - self.fee_percentage

        gross = max(float(acd_amount), 0.0)
        gross = min(gross, self.rates.convert_eth_to_acd(max(actor.eth, 0.0)))
        gross = min(gross, max(maker.acd, 0.0) / keep)
        if gross <= 0.0:
            LOGGER.info("buy_acd() nothing filled for %s (requested %.4f)", actor_id, acd_amount)
            return TradeResult("buy", actor_id, 0.0, 0.0, 0.0)

        received = gross * keep
        eth_in = self.rates.convert_acd_to_eth(gross)
        with self.ledger.atomic():
            self.ledger.transfer_eth(actor_id, self.market_maker_id, eth_in)
            self.ledger.transfer_acd(self.market_maker_id, actor_id, received)
        self.acd_bought += received
        LOGGER.debug("%s bought %.4f ACD for %.6f ETH", actor_id, received, eth_in)
        return TradeResult("buy", actor_id, received, eth_in, gross - received)
