"""
Token Bucket Rate Limiter

Async token bucket pacing probe dispatch.

SECURITY FEATURES:
- Hard ceiling on probes per second
- Token bucket bursting control
- Atomic refill/consume under an asyncio lock

Version: 1.0.0
"""

import asyncio
import logging
import time
from typing import Optional

security_logger = logging.getLogger('security')


# Security: upper bound on probe rate (keeps scans from turning into floods)
MAX_PROBE_RATE = 1000
DEFAULT_PROBE_RATE = 100


def enforce_rate_limit(rate: Optional[float], max_rate: float = MAX_PROBE_RATE) -> Optional[float]:
    """
    Enforce the probe rate ceiling.

    Args:
        rate: Requested probes per second (None or <= 0 disables pacing)
        max_rate: Hard ceiling

    Returns:
        Enforced rate, or None when pacing is disabled
    """
    if rate is None or rate <= 0:
        return None

    if rate > max_rate:
        security_logger.warning(
            f"Probe rate {rate}/s exceeds max {max_rate}/s, capping"
        )
        return max_rate

    return rate


class AsyncTokenBucket:
    """
    Token bucket for coroutines.

    Attributes:
        rate: Tokens added per second
        capacity: Maximum tokens the bucket can hold
    """

    def __init__(self, rate: float = DEFAULT_PROBE_RATE, capacity: Optional[float] = None):
        """
        Initialize token bucket.

        Args:
            rate: Tokens added per second
            capacity: Maximum tokens (defaults to rate)
        """
        self._rate = max(rate, 0.001)
        self._capacity = capacity or rate
        self._tokens = self._capacity
        self._last_update = time.monotonic()
        self._lock: Optional[asyncio.Lock] = None

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> float:
        return self._capacity

    def _add_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_update
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
            self._last_update = now

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so the bucket can be built outside a running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def acquire(self, tokens: float = 1) -> float:
        """
        Try to take tokens.

        Returns:
            Seconds to wait before the tokens are available (0 if taken now)
        """
        async with self._get_lock():
            self._add_tokens()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return 0.0
            needed = tokens - self._tokens
            # Reserve the tokens now; the caller sleeps for the deficit
            self._tokens -= tokens
            return needed / self._rate

    async def acquire_and_wait(self, tokens: float = 1) -> None:
        wait_time = await self.acquire(tokens)
        if wait_time > 0:
            await asyncio.sleep(wait_time)

    def get_tokens(self) -> float:
        self._add_tokens()
        return self._tokens

    def reset(self) -> None:
        self._tokens = self._capacity
        self._last_update = time.monotonic()
