"""
Fatal error types for the ACD simulation core.

Soft rejections (insufficient collateral, insufficient ACD, loan below the
product minimum, loan not yet due) are return values, not exceptions.
"""

from __future__ import annotations


class SimulationError(RuntimeError):
    """Base class for errors that halt a simulation run."""


class InvariantViolationError(SimulationError):
    """A conservation invariant of the ledger no longer holds."""

    def __init__(self, quantity: str, value: float, message: str | None = None):
        self.quantity = quantity
        self.value = float(value)
        super().__init__(message or f"{quantity} has gone negative: {self.value!r}")


class RepaymentFailedError(InvariantViolationError):
    """A borrower was certain it could repay but the ledger rejected it."""

    def __init__(self, actor_id: str, repayment_due: float, acd_balance: float):
        self.actor_id = actor_id
        self.repayment_due = float(repayment_due)
        super().__init__(
            "acd_balance",
            acd_balance,
            f"{actor_id} couldn't repay. repaymentDue: {self.repayment_due!r}, "
            f"ACD borrower balance: {float(acd_balance)!r}",
        )


class InvalidReferenceError(SimulationError, LookupError):
    """An actor, loan or loan product id does not exist."""
