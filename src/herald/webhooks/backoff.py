"""Exponential backoff with jitter for delivery retries."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from herald.config import RetryPolicy
from herald.models import utc_now


def backoff_delay(attempt_count: int, policy: RetryPolicy) -> float:
    """Un-jittered delay in seconds after ``attempt_count`` failed attempts.

    Non-decreasing in ``attempt_count``: base * 2**n, capped at the maximum.
    """
    return min(policy.backoff_base_seconds * (2**attempt_count), policy.backoff_max_seconds)


def jittered_delay(
    attempt_count: int,
    policy: RetryPolicy,
    rng: random.Random | None = None,
) -> float:
    """Delay plus uniform jitter in ``[0, jitter_ratio * delay]``."""
    delay = backoff_delay(attempt_count, policy)
    if policy.jitter_ratio == 0:
        return delay
    uniform = (rng or random).uniform
    return delay + uniform(0.0, policy.jitter_ratio * delay)


def next_attempt_time(
    attempt_count: int,
    policy: RetryPolicy,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> datetime:
    """When the next attempt is due, given how many attempts have failed."""
    return (now or utc_now()) + timedelta(seconds=jittered_delay(attempt_count, policy, rng))
