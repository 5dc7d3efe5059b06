"""
Bounded counters.

Evaluation and iteration budgets are enforced by these counters; an optimizer
increments them and lets the error propagate when the ceiling is passed.
"""

from typing import Type

from ..exceptions import ConfigurationError, MaxCountExceededError


class Incrementor:
    """
    Counter that fails once it goes past a maximal count.

    Parameters
    ----------
    maximal_count : int
        Largest value the counter may reach.
    error : type
        MaxCountExceededError subclass raised when the ceiling is exceeded.
    """

    def __init__(
        self,
        maximal_count: int,
        error: Type[MaxCountExceededError] = MaxCountExceededError,
    ):
        if maximal_count <= 0:
            raise ConfigurationError(
                f"maximal count must be positive, got {maximal_count}"
            )
        self.maximal_count = int(maximal_count)
        self.error = error
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def can_increment(self) -> bool:
        return self._count < self.maximal_count

    def increment_count(self, amount: int = 1) -> None:
        """Add ``amount`` to the counter, raising once past the ceiling."""
        self._count += amount
        if self._count > self.maximal_count:
            raise self.error(self.maximal_count)

    def reset(self) -> None:
        self._count = 0

    def __repr__(self):
        return f"Incrementor(count={self._count}, maximal_count={self.maximal_count})"
