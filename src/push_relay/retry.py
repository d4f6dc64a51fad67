"""
Retry policy calculator and retry-eligibility decision.

Both functions are pure apart from reading the clock / RNG, so the core
and the worker share them verbatim.
"""

from __future__ import annotations

import math
import random
from datetime import datetime, timedelta
from typing import Optional

from .config import RetryPolicy
from .results import ProviderResult
from .utils import utc_now

JITTER_RATIO = 0.25


def calculate_backoff_ms(attempt: int, policy: RetryPolicy) -> float:
    """
    Exponential backoff with cap and optional +/-25% jitter.

    delay = min(base_delay_ms * backoff_factor ** attempt, max_delay_ms)

    Args:
        attempt: Attempt number (0-based)
        policy: Retry policy

    Returns:
        Delay in milliseconds, never negative
    """
    try:
        delay_ms = min(
            policy.base_delay_ms * math.pow(policy.backoff_factor, attempt), policy.max_delay_ms
        )
    except OverflowError:
        delay_ms = policy.max_delay_ms

    if policy.jitter:
        jitter_range = delay_ms * JITTER_RATIO
        delay_ms += random.uniform(-jitter_range, jitter_range)

    return max(0.0, delay_ms)


def calculate_next_retry(
    attempt: int,
    policy: RetryPolicy,
    retry_after: Optional[float] = None,
) -> datetime:
    """
    Compute when an attempt becomes eligible for retry.

    A positive ``retry_after`` (seconds, usually from a Retry-After header)
    bypasses backoff and jitter entirely.

    Returns:
        UTC-aware timestamp of the next retry
    """
    now = utc_now()
    if retry_after is not None and retry_after > 0:
        return now + timedelta(seconds=retry_after)
    return now + timedelta(milliseconds=calculate_backoff_ms(attempt, policy))


def should_retry(result: ProviderResult, attempt: int, max_retries: int) -> bool:
    """
    Decide whether a failed attempt may be tried again.

    Providers are expected to set ``should_retry`` for 429 and 5xx responses;
    the status code itself never overrides the provider's flag.
    """
    if attempt >= max_retries:
        return False
    return bool(result.should_retry)
