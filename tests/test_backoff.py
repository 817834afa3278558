"""Tests for the reconnection backoff policy."""

import random

from facial_attendance.services.backoff import BackoffPolicy


def test_delays_double_up_to_cap() -> None:
    policy = BackoffPolicy(
        initial_delay_seconds=1.0, max_delay_seconds=5.0, max_attempts=4, jitter=0.0
    )

    assert list(policy.delays()) == [1.0, 2.0, 4.0, 5.0]


def test_jitter_only_shortens_delays() -> None:
    policy = BackoffPolicy(max_attempts=6, jitter=0.5)

    delays = list(policy.delays(random.Random(3)))

    bases = [1.0, 2.0, 4.0, 8.0, 16.0, 20.0]
    assert len(delays) == 6
    for delay, base in zip(delays, bases, strict=True):
        assert base * 0.5 <= delay <= base
