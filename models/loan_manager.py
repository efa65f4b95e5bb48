"""
Loan lifecycle: origination, repayment and default collection.

Each loan moves Open -> Repaid or Open -> Defaulted; both are terminal.
All balance changes go through the Ledger inside one atomic block and are
followed by an invariant check.
"""

from __future__ import annotations

import logging
import math
from collections import Counter, deque
from dataclasses import dataclass
from enum import Enum

from config.params import ONE_DAY_IN_SECS, LoanProductParams, MarketParams
from models.clock import SimulationClock
from models.errors import InvalidReferenceError
from models.exchange import RateFeed
from models.ledger import Ledger

LOGGER = logging.getLogger(__name__)


class LoanStatus(Enum):
    OPEN = "open"
    REPAID = "repaid"
    DEFAULTED = "defaulted"


@dataclass(frozen=True)
class LoanProduct:
    """Immutable loan terms registered with the manager."""

    id: int
    minimum_loan_in_acd: float
    loan_collateral_ratio: float
    interest_pt: float
    repayment_period_in_days: float
    default_fee_percentage: float

    @classmethod
    def from_params(cls, product_id: int, params: LoanProductParams) -> "LoanProduct":
        return cls(
            id=product_id,
            minimum_loan_in_acd=params.minimum_loan_in_acd,
            loan_collateral_ratio=params.loan_collateral_ratio,
            interest_pt=params.interest_pt,
            repayment_period_in_days=params.repayment_period_in_days,
            default_fee_percentage=params.default_fee_percentage,
        )

    @property
    def period_interest_rate(self) -> float:
        """(1 + annual rate) ^ (period days / 365) - 1"""
        return (1.0 + self.interest_pt) ** (self.repayment_period_in_days / 365.0) - 1.0

    @property
    def repayment_period_in_secs(self) -> float:
        return self.repayment_period_in_days * ONE_DAY_IN_SECS


@dataclass(frozen=True)
class Loan:
    """An open loan. repayment_due == loan_amount_in_acd + premium_in_acd."""

    id: int
    actor_id: str
    product_id: int
    collateral_in_eth: float
    loan_amount_in_acd: float
    premium_in_acd: float
    repayment_due: float
    repay_by: float
    default_fee_percentage: float
    taken_at: float


@dataclass(frozen=True)
class LoanEvent:
    """Append-only record of a loan state transition."""

    time: float
    kind: str
    actor_id: str
    loan_id: int
    acd_amount: float
    eth_amount: float


class LoanManager:
    """Sole owner and writer of the loan arena."""

    def __init__(
        self,
        ledger: Ledger,
        clock: SimulationClock,
        rates: RateFeed,
        reserve_id: str = "reserve",
        market: MarketParams | None = None,
        event_log_maxlen: int | None = 10_000,
    ):
        self.ledger = ledger
        self.clock = clock
        self.rates = rates
        self.reserve_id = reserve_id
        self.market = market or MarketParams()
        self._products: list[LoanProduct] = []
        self._loans: dict[int, Loan] = {}
        self._status: dict[int, LoanStatus] = {}
        self._next_loan_id = 0
        self.events: deque[LoanEvent] = deque(maxlen=event_log_maxlen)
        self.counts: Counter[str] = Counter()

    # -- products -----------------------------------------------------------

    def create_loan_product(self, params: LoanProductParams) -> LoanProduct:
        product = LoanProduct.from_params(len(self._products), params)
        self._products.append(product)
        return product

    @property
    def loan_products(self) -> tuple[LoanProduct, ...]:
        return tuple(self._products)

    def get_loan_product(self, product_id: int) -> LoanProduct:
        if product_id not in range(len(self._products)):
            raise InvalidReferenceError(f"takeLoan() error: Invalid loanProduct Id: {product_id!r}")
        return self._products[product_id]

    # -- reads --------------------------------------------------------------

    def get_loan(self, loan_id: int) -> Loan:
        try:
            return self._loans[loan_id]
        except KeyError:
            raise InvalidReferenceError(f"No open loan with id {loan_id!r}") from None

    def loan_status(self, loan_id: int) -> LoanStatus:
        try:
            return self._status[loan_id]
        except KeyError:
            raise InvalidReferenceError(f"Unknown loanId: {loan_id!r}") from None

    def loans_for_actor(self, actor_id: str) -> list[Loan]:
        account = self.ledger.account(actor_id)
        return [self._loans[loan_id] for loan_id in sorted(account.loan_ids)]

    def open_loans(self) -> list[Loan]:
        return [self._loans[loan_id] for loan_id in sorted(self._loans)]

    def max_borrowable_amount(self, product_id: int) -> float:
        """Largest principal the system-wide cap still admits for a product."""
        product = self.get_loan_product(product_id)
        cap = self.market.max_open_loans_acd
        if math.isinf(cap):
            return math.inf
        headroom = max(cap - self.ledger.pools.open_loans_acd, 0.0)
        return headroom / (1.0 + product.period_interest_rate)

    # -- transitions --------------------------------------------------------

    def take_loan(self, actor_id: str, product_id: int, loan_amount_in_acd: float) -> int | None:
        """
        Open a loan against ETH collateral.

        Returns the new loan id, or None when the amount is below the product
        minimum or the actor's ETH does not cover the collateral.
        """
        product = self.get_loan_product(product_id)
        account = self.ledger.account(actor_id)
        amount = float(loan_amount_in_acd)

        if amount < product.minimum_loan_in_acd:
            LOGGER.debug(
                "takeLoan() %s: %.4f below minimum %.4f", actor_id, amount, product.minimum_loan_in_acd
            )
            return None

        now = self.clock.get_time()
        collateral_in_eth = amount * self.rates.eth_to_acd / product.loan_collateral_ratio
        premium_in_acd = amount * product.period_interest_rate
        repayment_due = amount + premium_in_acd
        repay_by = now + product.repayment_period_in_secs

        if account.eth < collateral_in_eth:
            LOGGER.info(
                "takeLoan() eth balance below collateral: %s has %.6f, needs %.6f",
                actor_id, account.eth, collateral_in_eth,
            )
            return None

        loan_id = self._next_loan_id
        with self.ledger.atomic():
            # collateral user -> pool
            self.ledger.lock_collateral(actor_id, collateral_in_eth)
            # MINT principal -> user, premium -> interest holding pool
            self.ledger.mint_acd(actor_id, amount)
            self.ledger.mint_to_pool("interest_holding_pool", premium_in_acd)
            self.ledger.book("open_loans_acd", repayment_due)
            self.ledger.attach_loan(actor_id, loan_id)
            self.ledger.check_invariants("takeLoan")

        self._next_loan_id += 1
        self._loans[loan_id] = Loan(
            id=loan_id,
            actor_id=account.actor_id,
            product_id=product.id,
            collateral_in_eth=collateral_in_eth,
            loan_amount_in_acd=amount,
            premium_in_acd=premium_in_acd,
            repayment_due=repayment_due,
            repay_by=repay_by,
            default_fee_percentage=product.default_fee_percentage,
            taken_at=now,
        )
        self._status[loan_id] = LoanStatus.OPEN
        self._record(now, "take", account.actor_id, loan_id, amount, collateral_in_eth)
        return loan_id

    def repay_loan(self, actor_id: str, loan_id: int) -> bool:
        """
        Repay a loan in full.

        Returns False (no changes) when the actor's ACD does not cover the
        repayment. Referencing a loan that is not open for this actor raises.
        """
        account = self.ledger.account(actor_id)
        loan = self._loans.get(loan_id)
        if loan is None or loan_id not in account.loan_ids:
            raise InvalidReferenceError(
                f"repayLoan() error. Invalid actorId ({actor_id!r}) or loanId ({loan_id!r})"
            )

        if account.acd < loan.repayment_due:
            LOGGER.info(
                "repayLoan() ACD balance of %.6f is not enough to repay %.6f (%s)",
                account.acd, loan.repayment_due, actor_id,
            )
            return False

        with self.ledger.atomic():
            # repayment -> BURN
            self.ledger.burn_acd(actor_id, loan.repayment_due)
            # collateral pool -> user
            self.ledger.release_collateral(actor_id, loan.collateral_in_eth)
            self.ledger.move_pool("interest_holding_pool", "interest_earned_pool", loan.premium_in_acd)
            self.ledger.book("open_loans_acd", -loan.repayment_due)
            self.ledger.detach_loan(actor_id, loan_id)
            self.ledger.check_invariants("repayLoan")

        self._close(loan, LoanStatus.REPAID)
        self._record(self.clock.get_time(), "repay", loan.actor_id, loan_id,
                     loan.repayment_due, loan.collateral_in_eth)
        return True

    def collect_defaulted_loan(self, actor_id: str, loan_id: int) -> bool:
        """
        Collect a loan past its repay-by time.

        The reserve receives up to principal * rate * (1 + default fee) of the
        collateral; the borrower gets the rest back. Returns False (no-op)
        when the actor has no open loan with this id, or it is not yet due.
        An unknown actor still raises InvalidReferenceError.
        """
        account = self.ledger.account(actor_id)
        if loan_id not in account.loan_ids:
            LOGGER.debug("collectDefaultedLoan() %s has no open loan %r", actor_id, loan_id)
            return False
        loan = self._loans[loan_id]

        now = self.clock.get_time()
        if loan.repay_by >= now:
            return False

        reserve = self.ledger.account(self.reserve_id)
        target_default_fee_in_eth = (
            loan.loan_amount_in_acd * self.rates.eth_to_acd * (1.0 + loan.default_fee_percentage)
        )
        actual_default_fee_in_eth = min(loan.collateral_in_eth, target_default_fee_in_eth)

        with self.ledger.atomic():
            # collateral -> reserve / user
            self.ledger.release_collateral(reserve.actor_id, actual_default_fee_in_eth)
            self.ledger.release_collateral(actor_id, loan.collateral_in_eth - actual_default_fee_in_eth)
            # interest holding pool -> reserve
            self.ledger.pay_from_pool("interest_holding_pool", reserve.actor_id, loan.premium_in_acd)
            self.ledger.book("open_loans_acd", -loan.repayment_due)
            self.ledger.book("defaulted_loans_acd", loan.repayment_due)
            self.ledger.detach_loan(actor_id, loan_id)
            self.ledger.check_invariants("collectDefaultedLoan")

        self._close(loan, LoanStatus.DEFAULTED)
        self._record(now, "default", loan.actor_id, loan_id, loan.repayment_due, actual_default_fee_in_eth)
        return True

    def collect_all_defaulted_loans(self) -> list[int]:
        """Collect every open loan past due. Returns the collected loan ids."""
        now = self.clock.get_time()
        due = [loan for loan in self.open_loans() if loan.repay_by < now]
        return [
            loan.id for loan in due
            if self.collect_defaulted_loan(loan.actor_id, loan.id)
        ]

    # -- internals ----------------------------------------------------------

    def _close(self, loan: Loan, status: LoanStatus) -> None:
        del self._loans[loan.id]
        self._status[loan.id] = status

    def _record(self, time: float, kind: str, actor_id: str, loan_id: int,
                acd_amount: float, eth_amount: float) -> None:
        self.events.append(LoanEvent(time, kind, actor_id, loan_id, acd_amount, eth_amount))
        self.counts[kind] += 1
        LOGGER.debug("%s %s loan=%d acd=%.4f eth=%.6f", actor_id, kind, loan_id, acd_amount, eth_amount)
