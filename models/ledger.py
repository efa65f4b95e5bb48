"""
Balance ledger: per-actor ACD/ETH balances and the global pools.

The ledger applies value movements without checking sufficiency of funds;
callers validate before mutating and call check_invariants() afterwards.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Iterable, Iterator

import numpy as np

from models.errors import InvalidReferenceError, InvariantViolationError

LOGGER = logging.getLogger(__name__)

LEDGER_EPSILON = 1e-9
# Float rounding tolerance for "must not go negative" checks


@dataclass
class ActorAccount:
    """Balances of a single actor plus the ids of the loans it owns."""

    actor_id: str
    acd: float = 0.0
    eth: float = 0.0
    loan_ids: set[int] = field(default_factory=set)


@dataclass
class PoolBalances:
    """Global pools held by the system itself."""

    collateral_held: float = 0.0
    # ETH
    interest_holding_pool: float = 0.0
    interest_earned_pool: float = 0.0
    open_loans_acd: float = 0.0
    defaulted_loans_acd: float = 0.0


POOL_NAMES = tuple(f.name for f in fields(PoolBalances))
ACD_POOLS = ("interest_holding_pool", "interest_earned_pool")


def _check_amount(amount: float) -> float:
    amount = float(amount)
    if not np.isfinite(amount) or amount < 0.0:
        raise ValueError(f"amount must be finite and non-negative, got {amount!r}")
    return amount


class Ledger:
    """Single authoritative balance sheet for one simulation run."""

    def __init__(self):
        self._accounts: dict[str, ActorAccount] = {}
        self.pools = PoolBalances()
        # one journal per open atomic() block: actor id -> pre-image, None if opened inside
        self._journals: list[dict[str, tuple | None]] = []

    # -- accounts -----------------------------------------------------------

    def open_account(self, actor_id: str, acd: float = 0.0, eth: float = 0.0) -> ActorAccount:
        actor_id = str(actor_id)
        if actor_id in self._accounts:
            raise ValueError(f"account {actor_id!r} already exists")
        account = ActorAccount(actor_id=actor_id, acd=_check_amount(acd), eth=_check_amount(eth))
        self._accounts[actor_id] = account
        for journal in self._journals:
            journal.setdefault(actor_id, None)
        return account

    def account(self, actor_id: str) -> ActorAccount:
        try:
            return self._accounts[str(actor_id)]
        except KeyError:
            raise InvalidReferenceError(f"Invalid actorId: {actor_id!r}") from None

    def has_account(self, actor_id: str) -> bool:
        return str(actor_id) in self._accounts

    @property
    def actor_ids(self) -> list[str]:
        return list(self._accounts)

    def accounts(self) -> Iterator[ActorAccount]:
        return iter(self._accounts.values())

    def _mutable(self, actor_id: str) -> ActorAccount:
        """Account about to change; journaled on first touch inside atomic()."""
        account = self.account(actor_id)
        for journal in self._journals:
            if account.actor_id not in journal:
                journal[account.actor_id] = (account.acd, account.eth, set(account.loan_ids))
        return account

    # -- loan ownership -----------------------------------------------------

    def attach_loan(self, actor_id: str, loan_id: int) -> None:
        self._mutable(actor_id).loan_ids.add(loan_id)

    def detach_loan(self, actor_id: str, loan_id: int) -> None:
        self._mutable(actor_id).loan_ids.discard(loan_id)

    # -- actor <-> actor ----------------------------------------------------

    def transfer_acd(self, from_id: str, to_id: str, amount: float) -> None:
        amount = _check_amount(amount)
        source, target = self._mutable(from_id), self._mutable(to_id)
        source.acd -= amount
        target.acd += amount

    def transfer_eth(self, from_id: str, to_id: str, amount: float) -> None:
        amount = _check_amount(amount)
        source, target = self._mutable(from_id), self._mutable(to_id)
        source.eth -= amount
        target.eth += amount

    # -- supply changes -----------------------------------------------------

    def mint_acd(self, actor_id: str, amount: float) -> None:
        amount = _check_amount(amount)
        self._mutable(actor_id).acd += amount

    def burn_acd(self, actor_id: str, amount: float) -> None:
        amount = _check_amount(amount)
        self._mutable(actor_id).acd -= amount

    def mint_to_pool(self, pool: str, amount: float) -> None:
        self._adjust_pool(pool, _check_amount(amount))

    # -- actor <-> pools ----------------------------------------------------

    def lock_collateral(self, actor_id: str, amount: float) -> None:
        amount = _check_amount(amount)
        self._mutable(actor_id).eth -= amount
        self.pools.collateral_held += amount

    def release_collateral(self, actor_id: str, amount: float) -> None:
        amount = _check_amount(amount)
        self._mutable(actor_id).eth += amount
        self.pools.collateral_held -= amount

    def move_pool(self, from_pool: str, to_pool: str, amount: float) -> None:
        amount = _check_amount(amount)
        self._adjust_pool(from_pool, -amount)
        self._adjust_pool(to_pool, amount)

    def pay_from_pool(self, pool: str, actor_id: str, amount: float) -> None:
        """Move ACD out of an interest pool onto an actor's balance."""
        if pool not in ACD_POOLS:
            raise ValueError(f"{pool} does not hold ACD")
        amount = _check_amount(amount)
        account = self._mutable(actor_id)
        self._adjust_pool(pool, -amount)
        account.acd += amount

    def book(self, pool: str, delta: float) -> None:
        """Bookkeeping-only adjustment (open/defaulted loan totals)."""
        if pool in ACD_POOLS or pool == "collateral_held":
            raise ValueError(f"{pool} holds value; use a transfer primitive")
        self._adjust_pool(pool, float(delta))

    def _adjust_pool(self, pool: str, delta: float) -> None:
        if pool not in POOL_NAMES:
            raise InvalidReferenceError(f"Unknown pool: {pool!r}")
        setattr(self.pools, pool, getattr(self.pools, pool) + delta)

    # -- atomicity ----------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator["Ledger"]:
        """
        Apply a multi-field mutation as one unit.

        Only the accounts touched inside the block are journaled. On any
        exception they, the pools and any account opened inside the block are
        restored to their state on entry and the exception propagates. Blocks
        nest; an inner block that fails rolls back only its own changes.
        """
        journal: dict[str, tuple | None] = {}
        pools = replace(self.pools)
        self._journals.append(journal)
        try:
            yield self
        except BaseException:
            for key, saved in journal.items():
                if saved is None:
                    self._accounts.pop(key, None)
                    continue
                acc = self._accounts[key]
                acc.acd, acc.eth, acc.loan_ids = saved
            for name in POOL_NAMES:
                setattr(self.pools, name, getattr(pools, name))
            raise
        finally:
            self._journals.pop()

    # -- derived reads ------------------------------------------------------

    @property
    def total_acd(self) -> float:
        """All actor ACD plus both interest pools, recomputed on every read."""
        actor_acd = sum(acc.acd for acc in self._accounts.values())
        return actor_acd + self.pools.interest_holding_pool + self.pools.interest_earned_pool

    @property
    def total_eth(self) -> float:
        return sum(acc.eth for acc in self._accounts.values()) + self.pools.collateral_held

    def check_invariants(self, operation: str = "") -> None:
        """Raise InvariantViolationError if a conserved quantity went negative."""
        checks = (
            ("totalAcd", self.total_acd),
            ("collateralHeld", self.pools.collateral_held),
            ("interestHoldingPool", self.pools.interest_holding_pool),
        )
        for quantity, value in checks:
            if value < -LEDGER_EPSILON:
                LOGGER.error("%s: %s has gone negative (%r)", operation or "ledger", quantity, value)
                raise InvariantViolationError(quantity, value)

    def check_loan_consistency(self, loans: Iterable) -> None:
        """
        Pool totals must equal the sums over currently open loans:

            collateral_held       == sum(collateral_in_eth)
            interest_holding_pool == sum(premium_in_acd)
            open_loans_acd        == sum(repayment_due)
        """
        loans = list(loans)
        expected = {
            "collateralHeld": (self.pools.collateral_held, sum(loan.collateral_in_eth for loan in loans)),
            "interestHoldingPool": (self.pools.interest_holding_pool, sum(loan.premium_in_acd for loan in loans)),
            "openLoansAcd": (self.pools.open_loans_acd, sum(loan.repayment_due for loan in loans)),
        }
        for quantity, (booked, summed) in expected.items():
            if not np.isclose(booked, summed, rtol=1e-9, atol=LEDGER_EPSILON):
                raise InvariantViolationError(
                    quantity,
                    booked,
                    f"{quantity} is {booked!r} but open loans sum to {summed!r}",
                )

    def snapshot(self) -> dict:
        """Plain-dict copy of every balance."""
        return {
            "actors": {
                key: {"acd": acc.acd, "eth": acc.eth, "loan_ids": sorted(acc.loan_ids)}
                for key, acc in self._accounts.items()
            },
            "pools": asdict(self.pools),
            "total_acd": self.total_acd,
        }
