"""Exponential backoff for retrying the run call.

Formula: delay = base * factor^(attempt-1), plus optional jitter, clamped to
``[base_delay_ms, max_delay_ms]``.
"""

import asyncio
import random
from dataclasses import dataclass

from .config import Settings


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How often and how patiently to retry a transient failure.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay_ms: Delay before the first retry, and the floor for all delays
        max_delay_ms: Ceiling for any delay
        factor: Multiplier per attempt
        jitter: Random extra delay as a ratio of the base delay (0.0-1.0)
    """

    max_attempts: int = 3
    base_delay_ms: int = 1_000
    max_delay_ms: int = 8_000
    factor: float = 2.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must not be negative")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if self.factor < 1.0:
            raise ValueError("factor must be >= 1.0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0.0 and 1.0")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.max_retries + 1),
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
        )


@dataclass(frozen=True)
class RetryAttempt:
    """Reported to observers before each retry."""

    attempt: int  # the attempt that failed (1-indexed)
    delay_ms: int
    error_code: str | None
    message: str


def compute_backoff(policy: RetryPolicy, attempt: int) -> int:
    """Delay in milliseconds before retrying after failed attempt ``attempt``."""
    exponent = max(attempt - 1, 0)
    base = policy.base_delay_ms * (policy.factor**exponent)
    delay = base + base * policy.jitter * random.random()
    return int(min(policy.max_delay_ms, max(policy.base_delay_ms, delay)))


async def sleep_with_backoff(delay_ms: int, abort_event: asyncio.Event | None = None) -> bool:
    """Sleep for ``delay_ms``, waking early if ``abort_event`` is set.

    Returns:
        True if the sleep completed, False if it was aborted
    """
    delay_s = delay_ms / 1000
    if abort_event is None:
        await asyncio.sleep(delay_s)
        return True
    try:
        await asyncio.wait_for(abort_event.wait(), timeout=delay_s)
        return False
    except asyncio.TimeoutError:
        return True
