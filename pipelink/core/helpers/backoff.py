import random
from dataclasses import dataclass


@dataclass
class ExponentialBackoff:
    """
    Exponential backoff with optional jitter, used to pace client connect
    attempts while an endpoint does not exist yet or has no free instance.

        next_delay = min(current * factor, maximum) + jitter

    Local endpoints usually appear within milliseconds, so the defaults
    start small and stay short.
    """

    initial: float = 0.05
    """Initial delay (in seconds) before the first retry."""

    maximum: float = 2.0
    """Maximum allowed delay (in seconds)."""

    factor: float = 2.0
    """Multiplicative factor applied to the delay after each retry."""

    jitter: float = 0.05
    """Maximum random jitter added to each delay."""

    _current: float = None
    """Internal state tracking the current delay."""

    def __post_init__(self):
        self._current = self.initial

    def next_delay(self, remaining: float | None = None) -> float:
        """
        Compute and return the next backoff delay.

        When `remaining` is given, the delay never exceeds it, so a caller
        bounded by a deadline does not oversleep.
        """
        delay = self._current
        self._current = min(self._current * self.factor, self.maximum)

        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)

        if remaining is not None:
            delay = max(0.0, min(delay, remaining))

        return delay

    def reset(self):
        """
        Reset the backoff delay to its initial value.
        """
        self._current = self.initial
