"""
ETH price simulation: a GBM path for the ETH/ACD rate feed.
"""

import numpy as np

from config.params import ONE_DAY_IN_SECS


class GBMSimulator:
    """
    Geometric Brownian Motion for the ETH price quoted in ACD.

    S(t+dt) = S(t) * exp((μ - σ²/2)*dt + σ*√dt*Z)

    μ and σ are annualized; dt is a year fraction.
    """

    def __init__(self, mu: float = 0.0, sigma: float = 0.0):
        if sigma < 0:
            raise ValueError("sigma must be non-negative")
        self.mu = mu
        self.sigma = sigma

    @staticmethod
    def year_fraction(time_step_seconds: float) -> float:
        """Convert a clock step in seconds to a year fraction."""
        return float(time_step_seconds) / (365.0 * ONE_DAY_IN_SECS)

    def log_increments(self, n_steps: int, dt: float, rng: np.random.Generator) -> np.ndarray:
        """Per-step log returns, shape (n_steps,)."""
        z = rng.standard_normal(n_steps)
        return (self.mu - 0.5 * self.sigma ** 2) * dt + self.sigma * np.sqrt(dt) * z

    def simulate_path(self, s0: float, n_steps: int, dt: float,
                      rng: np.random.Generator | None = None) -> np.ndarray:
        """
        Price path of shape (n_steps + 1,); element 0 is s0.

        One price per clock iteration, so a RateFeed built from it can be
        indexed by the iteration counter directly.
        """
        if s0 <= 0:
            raise ValueError("s0 must be positive")
        if n_steps < 0:
            raise ValueError("n_steps must be non-negative")
        if rng is None:
            rng = np.random.default_rng()

        log_prices = np.concatenate([[0.0], np.cumsum(self.log_increments(n_steps, dt, rng))])
        return s0 * np.exp(log_prices)
