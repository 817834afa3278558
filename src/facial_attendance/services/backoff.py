"""Reconnection backoff policy."""

import random
from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a cap, jitter and a bounded attempt count."""

    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 20.0
    max_attempts: int = 5
    jitter: float = 0.5

    def delays(self, rng: random.Random | None = None) -> Iterator[float]:
        """Yield one delay per reconnect attempt."""
        source = rng or random.Random()
        for attempt in range(self.max_attempts):
            base = min(self.max_delay_seconds, self.initial_delay_seconds * 2**attempt)
            yield base * (1.0 - self.jitter * source.random())
