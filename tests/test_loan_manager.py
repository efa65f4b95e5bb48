"""Tests for loan origination, repayment and default collection."""

import math

import numpy as np
import pytest

from config.params import ONE_DAY_IN_SECS, LoanProductParams, MarketParams
from models.clock import SimulationClock
from models.errors import InvalidReferenceError
from models.exchange import RateFeed
from models.ledger import Ledger
from models.loan_manager import LoanManager, LoanStatus

SCENARIO_PRODUCT = LoanProductParams(
    minimum_loan_in_acd=100,
    loan_collateral_ratio=2.0,
    interest_pt=0.10,
    repayment_period_in_days=30,
    default_fee_percentage=0.05,
)


def _manager(product=SCENARIO_PRODUCT, eth_prices=(1.0,), market=None, actors=None):
    ledger = Ledger()
    ledger.open_account("reserve")
    for actor_id, (acd, eth) in (actors or {"alice": (0.0, 100.0)}).items():
        ledger.open_account(actor_id, acd=acd, eth=eth)
    clock = SimulationClock(time_step=ONE_DAY_IN_SECS, steps_per_day=1)
    manager = LoanManager(ledger, clock, RateFeed(list(eth_prices)), market=market)
    manager.create_loan_product(product)
    return manager


def _advance_days(manager, days):
    for _ in range(days):
        meta = manager.clock.tick()
        manager.rates.advance(meta.iteration)


class TestLoanProducts:
    def test_period_interest_rate(self):
        manager = _manager()
        product = manager.get_loan_product(0)
        assert product.period_interest_rate == pytest.approx(1.1 ** (30 / 365) - 1)
        assert product.repayment_period_in_secs == 30 * ONE_DAY_IN_SECS

    def test_products_get_sequential_ids(self):
        manager = _manager()
        second = manager.create_loan_product(LoanProductParams(minimum_loan_in_acd=10))
        assert second.id == 1
        assert [p.id for p in manager.loan_products] == [0, 1]

    @pytest.mark.parametrize("product_id", [-1, 1, 99])
    def test_invalid_product_id(self, product_id):
        manager = _manager()
        with pytest.raises(InvalidReferenceError, match="Invalid loanProduct Id"):
            manager.take_loan("alice", product_id, 150)


class TestTakeLoan:
    def test_concrete_scenario(self):
        manager = _manager()
        ledger = manager.ledger
        before = ledger.snapshot()

        # 1000 ACD needs 500 ETH of collateral; alice only has 100
        assert manager.take_loan("alice", 0, 1000) is None
        assert ledger.snapshot() == before

        loan_id = manager.take_loan("alice", 0, 150)
        assert loan_id == 0
        loan = manager.get_loan(loan_id)
        rate = 1.1 ** (30 / 365) - 1
        assert loan.collateral_in_eth == pytest.approx(75.0)
        assert loan.premium_in_acd == pytest.approx(150 * rate)
        assert loan.premium_in_acd == pytest.approx(1.17, abs=0.02)
        assert loan.repayment_due == pytest.approx(150 + 150 * rate)
        assert loan.repay_by == 30 * ONE_DAY_IN_SECS

        alice = ledger.account("alice")
        assert alice.eth == pytest.approx(25.0)
        assert alice.acd == pytest.approx(150.0)
        assert alice.loan_ids == {0}
        assert ledger.pools.collateral_held == pytest.approx(75.0)
        assert ledger.pools.interest_holding_pool == pytest.approx(loan.premium_in_acd)
        assert ledger.pools.open_loans_acd == pytest.approx(loan.repayment_due)
        assert ledger.total_acd == pytest.approx(loan.repayment_due)
        assert manager.loan_status(loan_id) is LoanStatus.OPEN

    def test_below_minimum_is_ignored(self):
        manager = _manager()
        before = manager.ledger.snapshot()
        assert manager.take_loan("alice", 0, 99.99) is None
        assert manager.ledger.snapshot() == before
        assert manager.counts["take"] == 0

    def test_collateral_follows_rate(self):
        # ETH at 4 ACD: one ACD is worth 0.25 ETH
        manager = _manager(eth_prices=(4.0,))
        loan_id = manager.take_loan("alice", 0, 400)
        assert manager.get_loan(loan_id).collateral_in_eth == pytest.approx(50.0)

    def test_unknown_actor(self):
        manager = _manager()
        with pytest.raises(InvalidReferenceError):
            manager.take_loan("mallory", 0, 150)

    def test_loan_ids_are_never_reused(self):
        manager = _manager(actors={"alice": (0.0, 1000.0)})
        first = manager.take_loan("alice", 0, 150)
        manager.ledger.mint_acd("alice", 10.0)
        assert manager.repay_loan("alice", first)
        second = manager.take_loan("alice", 0, 150)
        assert second == first + 1

    def test_max_borrowable_amount(self):
        manager = _manager(market=MarketParams(max_open_loans_acd=1000.0))
        rate = manager.get_loan_product(0).period_interest_rate
        assert manager.max_borrowable_amount(0) == pytest.approx(1000 / (1 + rate))
        loan_id = manager.take_loan("alice", 0, 150)
        due = manager.get_loan(loan_id).repayment_due
        assert manager.max_borrowable_amount(0) == pytest.approx((1000 - due) / (1 + rate))

    def test_max_borrowable_unbounded_by_default(self):
        assert math.isinf(_manager().max_borrowable_amount(0))


class TestRepayLoan:
    def test_round_trip(self):
        manager = _manager()
        ledger = manager.ledger
        loan_id = manager.take_loan("alice", 0, 150)
        loan = manager.get_loan(loan_id)
        # borrower earns the premium elsewhere
        ledger.mint_acd("alice", loan.premium_in_acd)

        assert manager.repay_loan("alice", loan_id) is True
        alice = ledger.account("alice")
        assert alice.eth == pytest.approx(100.0)
        assert alice.acd == pytest.approx(0.0, abs=1e-9)
        assert alice.loan_ids == set()
        assert ledger.pools.collateral_held == pytest.approx(0.0, abs=1e-9)
        assert ledger.pools.interest_holding_pool == pytest.approx(0.0, abs=1e-9)
        assert ledger.pools.interest_earned_pool == pytest.approx(loan.premium_in_acd)
        assert ledger.pools.open_loans_acd == pytest.approx(0.0, abs=1e-9)
        assert manager.loan_status(loan_id) is LoanStatus.REPAID
        assert manager.open_loans() == []

    def test_insufficient_acd_is_soft_rejection(self):
        manager = _manager()
        loan_id = manager.take_loan("alice", 0, 150)
        before = manager.ledger.snapshot()
        # 150 ACD does not cover principal plus premium
        assert manager.repay_loan("alice", loan_id) is False
        assert manager.ledger.snapshot() == before
        assert manager.loan_status(loan_id) is LoanStatus.OPEN

    def test_repay_unknown_loan(self):
        manager = _manager()
        with pytest.raises(InvalidReferenceError, match="repayLoan"):
            manager.repay_loan("alice", 42)

    def test_repay_someone_elses_loan(self):
        manager = _manager(actors={"alice": (0.0, 100.0), "bob": (500.0, 0.0)})
        loan_id = manager.take_loan("alice", 0, 150)
        with pytest.raises(InvalidReferenceError):
            manager.repay_loan("bob", loan_id)

    def test_repay_twice(self):
        manager = _manager()
        loan_id = manager.take_loan("alice", 0, 150)
        manager.ledger.mint_acd("alice", 5.0)
        assert manager.repay_loan("alice", loan_id)
        with pytest.raises(InvalidReferenceError):
            manager.repay_loan("alice", loan_id)


class TestDefaults:
    def test_not_due_until_repay_by_has_passed(self):
        manager = _manager()
        loan_id = manager.take_loan("alice", 0, 150)
        _advance_days(manager, 30)
        # now == repay_by: still repayable
        assert manager.collect_defaulted_loan("alice", loan_id) is False
        assert manager.collect_all_defaulted_loans() == []
        _advance_days(manager, 1)
        assert manager.collect_defaulted_loan("alice", loan_id) is True
        assert manager.loan_status(loan_id) is LoanStatus.DEFAULTED

    def test_default_fee_capped_at_collateral(self):
        # ETH drops to 0.25 ACD, so 150 ACD of principal is worth 600 ETH
        manager = _manager(eth_prices=(1.0, 0.25))
        ledger = manager.ledger
        loan_id = manager.take_loan("alice", 0, 150)
        loan = manager.get_loan(loan_id)
        _advance_days(manager, 31)

        assert manager.collect_all_defaulted_loans() == [loan_id]
        reserve = ledger.account("reserve")
        assert reserve.eth == pytest.approx(loan.collateral_in_eth)
        assert ledger.account("alice").eth == pytest.approx(25.0)
        assert reserve.acd == pytest.approx(loan.premium_in_acd)
        assert ledger.pools.collateral_held == pytest.approx(0.0, abs=1e-9)
        assert ledger.pools.interest_holding_pool == pytest.approx(0.0, abs=1e-9)
        assert ledger.pools.open_loans_acd == pytest.approx(0.0, abs=1e-9)
        assert ledger.pools.defaulted_loans_acd == pytest.approx(loan.repayment_due)

    def test_remaining_collateral_returned(self):
        # ratio 0.5: 150 ACD locks 300 ETH, fee is 150 * 1.05 = 157.5 ETH
        product = LoanProductParams(loan_collateral_ratio=0.5)
        manager = _manager(product=product, actors={"alice": (0.0, 400.0)})
        ledger = manager.ledger
        loan_id = manager.take_loan("alice", 0, 150)
        _advance_days(manager, 31)

        assert manager.collect_defaulted_loan("alice", loan_id)
        assert ledger.account("reserve").eth == pytest.approx(157.5)
        assert ledger.account("alice").eth == pytest.approx(100.0 + 142.5)
        # principal stays with the borrower
        assert ledger.account("alice").acd == pytest.approx(150.0)

    def test_sweep_is_idempotent(self):
        manager = _manager(actors={"alice": (0.0, 100.0), "bob": (0.0, 100.0)})
        manager.take_loan("alice", 0, 150)
        manager.take_loan("bob", 0, 120)
        _advance_days(manager, 31)

        assert manager.collect_all_defaulted_loans() == [0, 1]
        after_first = manager.ledger.snapshot()
        assert manager.collect_all_defaulted_loans() == []
        assert manager.ledger.snapshot() == after_first
        assert manager.counts["default"] == 2

    def test_collect_closed_loan_is_noop(self):
        manager = _manager()
        loan_id = manager.take_loan("alice", 0, 150)
        manager.ledger.mint_acd("alice", 5.0)
        manager.repay_loan("alice", loan_id)
        _advance_days(manager, 31)
        before = manager.ledger.snapshot()
        assert manager.collect_defaulted_loan("alice", loan_id) is False
        assert manager.ledger.snapshot() == before

    def test_collect_unknown_or_foreign_loan_is_noop(self):
        manager = _manager(actors={"alice": (0.0, 100.0), "bob": (0.0, 0.0)})
        loan_id = manager.take_loan("alice", 0, 150)
        _advance_days(manager, 31)
        before = manager.ledger.snapshot()
        assert manager.collect_defaulted_loan("alice", 7) is False
        assert manager.collect_defaulted_loan("bob", loan_id) is False
        assert manager.ledger.snapshot() == before
        assert manager.loan_status(loan_id) is LoanStatus.OPEN
        # the owner can still be collected
        assert manager.collect_defaulted_loan("alice", loan_id) is True

    def test_collect_for_unknown_actor(self):
        manager = _manager()
        loan_id = manager.take_loan("alice", 0, 150)
        _advance_days(manager, 31)
        with pytest.raises(InvalidReferenceError):
            manager.collect_defaulted_loan("mallory", loan_id)

    def test_events_are_logged(self):
        manager = _manager()
        loan_id = manager.take_loan("alice", 0, 150)
        _advance_days(manager, 31)
        manager.collect_all_defaulted_loans()
        kinds = [event.kind for event in manager.events]
        assert kinds == ["take", "default"]
        assert all(event.loan_id == loan_id for event in manager.events)


def test_conservation_over_random_operations():
    rng = np.random.default_rng(2024)
    actors = {f"actor_{i}": (50.0, 500.0) for i in range(5)}
    prices = np.exp(np.cumsum(rng.normal(0.0, 0.05, 200)))
    manager = _manager(
        product=LoanProductParams(loan_collateral_ratio=0.6, repayment_period_in_days=10),
        eth_prices=prices,
        actors=actors,
    )
    ledger = manager.ledger
    names = list(actors)

    for _ in range(200):
        actor_id = names[rng.integers(len(names))]
        action = rng.integers(4)
        if action == 0:
            manager.take_loan(actor_id, 0, float(rng.uniform(50, 400)))
        elif action == 1:
            for loan in manager.loans_for_actor(actor_id):
                manager.repay_loan(actor_id, loan.id)
        elif action == 2:
            other = names[rng.integers(len(names))]
            amount = min(ledger.account(actor_id).acd, float(rng.uniform(0, 50)))
            if amount > 0:
                ledger.transfer_acd(actor_id, other, amount)
        else:
            _advance_days(manager, 1)
            manager.collect_all_defaulted_loans()

        ledger.check_invariants("random")
        ledger.check_loan_consistency(manager.open_loans())
        for account in ledger.accounts():
            assert account.acd >= -1e-9
            assert account.eth >= -1e-9

    counts = manager.counts
    assert counts["take"] == counts["repay"] + counts["default"] + len(manager.open_loans())
    assert ledger.total_eth == pytest.approx(sum(eth for _, eth in actors.values()))
