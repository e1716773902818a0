"""Wall-clock budget shared by every long-running pipeline stage."""

from __future__ import annotations

import time
from collections.abc import Callable


class BudgetExceededError(Exception):
    """Raised by :meth:`TimeBudget.check` once the allowance is spent."""

    def __init__(self, elapsed: float, limit: float) -> None:
        self.elapsed = elapsed
        self.limit = limit
        super().__init__(f"Time budget exceeded: {elapsed:.2f}s of {limit:.2f}s")


class TimeBudget:
    """Tracks elapsed time against a fixed allowance for one invocation.

    Exceeding the budget is a soft stop: callers poll :meth:`exceeded` between
    units of work, let the unit in flight finish, and report what is left.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.limit = seconds
        self._clock = clock
        self.started = clock()

    def elapsed(self) -> float:
        return self._clock() - self.started

    def remaining(self) -> float:
        return max(0.0, self.limit - self.elapsed())

    def exceeded(self) -> bool:
        return self.elapsed() >= self.limit

    def check(self) -> None:
        """Raise :class:`BudgetExceededError` if the budget is spent."""
        elapsed = self.elapsed()
        if elapsed >= self.limit:
            raise BudgetExceededError(elapsed, self.limit)
