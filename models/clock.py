"""Discrete simulation clock."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TickMeta:
    """Read-only view of the clock handed to policies each tick."""

    current_time: float
    time_step: float
    iteration: int
    steps_per_day: int


class SimulationClock:
    """Monotonic simulation time in seconds, advanced one fixed step per tick."""

    def __init__(self, time_step: float, steps_per_day: int, start_time: float = 0.0):
        if time_step <= 0:
            raise ValueError("time_step must be positive")
        if steps_per_day <= 0:
            raise ValueError("steps_per_day must be positive")
        self.time_step = float(time_step)
        self.steps_per_day = int(steps_per_day)
        self._time = float(start_time)
        self.iteration = 0

    def get_time(self) -> float:
        return self._time

    def tick(self) -> TickMeta:
        self._time += self.time_step
        self.iteration += 1
        return self.meta()

    def meta(self) -> TickMeta:
        return TickMeta(
            current_time=self._time,
            time_step=self.time_step,
            iteration=self.iteration,
            steps_per_day=self.steps_per_day,
        )
