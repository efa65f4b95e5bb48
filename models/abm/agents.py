"""ABM agent decision policies."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from config.params import BORROWER, ONE_DAY_IN_SECS, BorrowerParams
from models.errors import RepaymentFailedError

from .types import TickContext

LOGGER = logging.getLogger(__name__)


class ChanceSampler:
    """Turns a chance-per-day into a Bernoulli draw for the current tick."""

    def __init__(self, rng: np.random.Generator, steps_per_day: int):
        if steps_per_day <= 0:
            raise ValueError("steps_per_day must be positive")
        self.rng = rng
        self.steps_per_day = int(steps_per_day)

    def tick_probability(self, chance_in_a_day: float) -> float:
        p = float(np.clip(chance_in_a_day, 0.0, 1.0))
        return 1.0 - (1.0 - p) ** (1.0 / self.steps_per_day)

    def by_chance_in_a_day(self, chance_in_a_day: float) -> bool:
        p = self.tick_probability(chance_in_a_day)
        if p <= 0.0:
            return False
        if p >= 1.0:
            return True
        return bool(self.rng.random() < p)


class DecisionPolicy(Protocol):
    """Interface every actor behaviour implements."""

    def execute_moves(self, actor_id: str, ctx: TickContext) -> None:
        """Issue this tick's intents for `actor_id`."""


@dataclass(frozen=True)
class PassivePolicy:
    """Holds its balances and never trades or borrows (reserve, market maker)."""

    def execute_moves(self, actor_id: str, ctx: TickContext) -> None:
        return None


class BorrowerBasicPolicy:
    """
    Basic borrower: keeps at most one loan open.

    Without a loan it borrows with a daily chance scaled by how the market
    rate compares to the product rate. With a loan it sells ACD freely until
    repayment approaches, then buys back once and repays shortly before
    maturity, as long as the collateral is still worth more than the debt.
    A loan whose buy-back fell short, or whose bought ACD was sold again
    after the collateral dipped, is left to default.
    """

    def __init__(self, params: BorrowerParams = BORROWER, product_id: int = 0):
        self.params = params
        self.product_id = product_id
        self.wants_to_borrow_amount = float(params.wants_to_borrow_amount)
        self.tried_to_buy_for_repayment = False
        # set once the ACD bought for this loan is short or sold again
        self.repayment_abandoned = False
        self._serviced_loan_id: int | None = None

    def market_chance(self, market_rate: float, product_rate: float) -> float:
        if product_rate <= 0.0:
            return 1.0
        return min(1.0, market_rate / (product_rate * self.params.interest_sensitivity))

    def execute_moves(self, actor_id: str, ctx: TickContext) -> None:
        params = self.params
        meta = ctx.meta
        current_time = meta.current_time
        manager = ctx.loan_manager
        ledger = ctx.ledger
        loan_product = manager.get_loan_product(self.product_id)
        loans = manager.loans_for_actor(actor_id)

        loan = None
        will_repay_soon = False
        time_until_repayment = 0.0
        repayment_due = 0.0
        collateral_value_acd = 0.0
        loan_amount_now = 0.0

        if loans:
            # we have a loan, is repayment due?
            loan = loans[0]
            if loan.id != self._serviced_loan_id:
                self._serviced_loan_id = loan.id
                self.tried_to_buy_for_repayment = False
                self.repayment_abandoned = False
            repayment_due = loan.repayment_due + params.repayment_cost_acd
            time_until_repayment = loan.repay_by - current_time
            collateral_value_acd = ctx.rates.convert_eth_to_acd(loan.collateral_in_eth)
            lead_secs = (params.buy_acd_x_days_before_repay + params.repay_x_days_before) * ONE_DAY_IN_SECS
            will_repay_soon = (
                current_time >= loan.repay_by - lead_secs
                and repayment_due < collateral_value_acd
            )
        else:
            # no open loans, can we and do we want to take a new one?
            self._serviced_loan_id = None
            self.tried_to_buy_for_repayment = False
            self.repayment_abandoned = False
            chance = params.chance_to_take_loan * self.market_chance(
                ctx.market.market_loan_interest_rate, loan_product.interest_pt
            )
            if ctx.sampler.by_chance_in_a_day(chance):
                ratio = loan_product.loan_collateral_ratio
                eth_balance = max(ledger.account(actor_id).eth, 0.0)
                want_to_take_amount = min(
                    math.floor(self.wants_to_borrow_amount * ratio),
                    math.floor(ctx.rates.convert_eth_to_acd(eth_balance) * ratio),
                    manager.max_borrowable_amount(self.product_id),
                )
                if want_to_take_amount >= loan_product.minimum_loan_in_acd:
                    loan_amount_now = float(want_to_take_amount)

        if loan_amount_now > 0:
            self.tried_to_buy_for_repayment = False
            manager.take_loan(actor_id, self.product_id, loan_amount_now)

        # sell all ACD unless repayment is due soon
        acd_balance = ledger.account(actor_id).acd
        if (
            acd_balance > 0
            and not will_repay_soon
            and ctx.sampler.by_chance_in_a_day(params.chance_to_sell_all_acd)
        ):
            ctx.exchange.sell_acd(actor_id, acd_balance)
            if loan is not None and self.tried_to_buy_for_repayment:
                LOGGER.info("%s sold the ACD bought to repay loan %d", actor_id, loan.id)
                self.repayment_abandoned = True

        if will_repay_soon:
            self._service_loan(
                actor_id,
                ctx,
                loan,
                repayment_due=repayment_due,
                time_until_repayment=time_until_repayment,
                collateral_value_acd=collateral_value_acd,
            )

        # loan demand grows once a day
        if meta.iteration % meta.steps_per_day == 0:
            self.wants_to_borrow_amount *= (1.0 + params.wants_to_borrow_amount_growth_pa) ** (1.0 / 365.0)

    def _service_loan(self, actor_id, ctx, loan, *, repayment_due,
                      time_until_repayment, collateral_value_acd) -> None:
        ledger = ctx.ledger
        time_step = ctx.meta.time_step

        # Buy ACD in advance, once per loan. If the rate recovered too late
        # to leave a tick for buying, the loan is left to default.
        if (
            ledger.account(actor_id).acd < repayment_due
            and not self.tried_to_buy_for_repayment
            and time_until_repayment >= time_step
        ):
            needed = max(0.0, repayment_due - ledger.account(actor_id).acd)
            trade = ctx.exchange.buy_acd(actor_id, needed / (1.0 - ctx.exchange.fee_percentage))
            self.tried_to_buy_for_repayment = True
            if trade.acd_amount < needed and not math.isclose(trade.acd_amount, needed, rel_tol=1e-9):
                # not enough ETH or market-maker ACD; we let it default
                LOGGER.info(
                    "%s bought %.4f of %.4f ACD for loan %d, leaving it to default",
                    actor_id, trade.acd_amount, needed, loan.id,
                )
                self.repayment_abandoned = True

        acd_balance = ledger.account(actor_id).acd
        if (
            repayment_due < collateral_value_acd
            and time_until_repayment <= self.params.repay_x_days_before * ONE_DAY_IN_SECS
            and (
                acd_balance >= repayment_due
                or (
                    time_until_repayment < time_step
                    and self.tried_to_buy_for_repayment
                    and (not self.repayment_abandoned or acd_balance >= loan.repayment_due)
                )
            )
        ):
            if not ctx.loan_manager.repay_loan(actor_id, loan.id):
                raise RepaymentFailedError(actor_id, repayment_due, acd_balance)
            LOGGER.debug("%s repaid loan %d", actor_id, loan.id)
