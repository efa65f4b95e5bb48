"""Turn-based simulation loop for the ACD economy."""

from __future__ import annotations

import logging

import numpy as np

from config.params import MarketParams, load_config
from models.clock import SimulationClock
from models.exchange import Exchange, RateFeed
from models.ledger import Ledger
from models.loan_manager import LoanManager
from models.metrics import MetricsRecorder, observe

from .agents import BorrowerBasicPolicy, ChanceSampler, DecisionPolicy, PassivePolicy
from .types import Actor, SimulationResult, StepOutput, TickContext

LOGGER = logging.getLogger(__name__)

RESERVE_ID = "reserve"
MARKET_MAKER_ID = "exchange"


class ABMEngine:
    """
    Deterministic tick loop.

    Each step: clock tick -> rate update -> every actor's policy in
    registration order -> default sweep -> loan consistency check ->
    metrics row. The ledger is only mutated through the loan manager and
    the exchange.
    """

    def __init__(
        self,
        *,
        clock: SimulationClock,
        loan_manager: LoanManager,
        exchange: Exchange,
        rng: np.random.Generator,
        market: MarketParams | None = None,
        check_consistency: bool = True,
    ):
        self.clock = clock
        self.loan_manager = loan_manager
        self.ledger: Ledger = loan_manager.ledger
        self.rates: RateFeed = loan_manager.rates
        self.exchange = exchange
        self.market = market or loan_manager.market
        self.sampler = ChanceSampler(rng, clock.steps_per_day)
        self.check_consistency = check_consistency
        self.actors: list[Actor] = []
        self.metrics = MetricsRecorder()

    def add_actor(
        self,
        actor_id: str,
        policy: DecisionPolicy,
        *,
        acd: float = 0.0,
        eth: float = 0.0,
    ) -> Actor:
        if not self.ledger.has_account(actor_id):
            self.ledger.open_account(actor_id, acd=acd, eth=eth)
        actor = Actor(actor_id=actor_id, policy=policy)
        self.actors.append(actor)
        return actor

    def context(self) -> TickContext:
        return TickContext(
            meta=self.clock.meta(),
            loan_manager=self.loan_manager,
            exchange=self.exchange,
            rates=self.rates,
            market=self.market,
            sampler=self.sampler,
        )

    def step(self) -> StepOutput:
        counts_before = dict(self.loan_manager.counts)

        meta = self.clock.tick()
        self.rates.advance(meta.iteration)
        ctx = self.context()

        for actor in self.actors:
            actor.policy.execute_moves(actor.actor_id, ctx)

        self.loan_manager.collect_all_defaulted_loans()
        if self.check_consistency:
            self.ledger.check_loan_consistency(self.loan_manager.open_loans())
        self.metrics.record(observe(self.loan_manager, self.exchange))

        counts = self.loan_manager.counts
        return StepOutput(
            iteration=meta.iteration,
            current_time=meta.current_time,
            loans_taken=counts["take"] - counts_before.get("take", 0),
            loans_repaid=counts["repay"] - counts_before.get("repay", 0),
            loans_defaulted=counts["default"] - counts_before.get("default", 0),
        )

    def run(self, n_steps: int) -> SimulationResult:
        if n_steps < 0:
            raise ValueError("n_steps must be non-negative")
        for _ in range(n_steps):
            self.step()

        counts = self.loan_manager.counts
        warnings: list[str] = []
        if counts["default"] > counts["repay"]:
            warnings.append(
                f"defaults ({counts['default']}) outnumber repayments ({counts['repay']})"
            )
        return SimulationResult(
            metrics=self.metrics.as_arrays(),
            final_snapshot=self.ledger.snapshot(),
            n_steps=n_steps,
            loans_taken=counts["take"],
            loans_repaid=counts["repay"],
            loans_defaulted=counts["default"],
            warnings=warnings,
        )


def build_engine(params: dict | None = None, *, rates: RateFeed | None = None) -> ABMEngine:
    """
    Wire a ready-to-run engine from parameter records (see load_config()).

    Creates the reserve and market-maker actors, one loan product and
    `n_borrowers` basic borrowers. Price path and agent draws use separate
    streams derived from the configured seed.
    """
    params = params or load_config()
    sim_config = params["sim_config"]
    exchange_params = params["exchange"]
    borrower_params = params["borrower"]

    price_seed, agent_seed = np.random.SeedSequence(sim_config.seed).spawn(2)
    clock = SimulationClock(sim_config.time_step_seconds, sim_config.steps_per_day)
    if rates is None:
        rates = RateFeed.from_gbm(
            exchange_params,
            n_steps=sim_config.n_steps,
            time_step_seconds=sim_config.time_step_seconds,
            rng=np.random.default_rng(price_seed),
        )

    ledger = Ledger()
    ledger.open_account(RESERVE_ID, acd=sim_config.reserve_acd, eth=sim_config.reserve_eth)
    ledger.open_account(
        MARKET_MAKER_ID,
        acd=exchange_params.market_maker_acd,
        eth=exchange_params.market_maker_eth,
    )

    manager = LoanManager(ledger, clock, rates, reserve_id=RESERVE_ID, market=params["market"])
    product = manager.create_loan_product(params["loan_product"])
    exchange = Exchange(
        ledger,
        rates,
        MARKET_MAKER_ID,
        fee_percentage=exchange_params.exchange_fee_percentage,
    )

    engine = ABMEngine(
        clock=clock,
        loan_manager=manager,
        exchange=exchange,
        rng=np.random.default_rng(agent_seed),
    )
    engine.add_actor(RESERVE_ID, PassivePolicy())
    engine.add_actor(MARKET_MAKER_ID, PassivePolicy())
    for idx in range(sim_config.n_borrowers):
        engine.add_actor(
            f"borrower_{idx:04d}",
            BorrowerBasicPolicy(borrower_params, product_id=product.id),
            acd=borrower_params.initial_acd,
            eth=borrower_params.initial_eth,
        )

    LOGGER.info(
        "built engine: %d borrowers, %d steps of %ds, seed=%d",
        sim_config.n_borrowers, sim_config.n_steps, sim_config.time_step_seconds, sim_config.seed,
    )
    return engine
