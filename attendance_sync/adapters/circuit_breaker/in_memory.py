"""In-memory circuit breaker implementation.

Counts consecutive failures per key and trips the key once the count
reaches ``failure_threshold``. A tripped key stays unavailable for
``cooldown_seconds``; afterwards one more attempt is allowed (half-open).
Suitable for a single sync process.

Thread-safe via asyncio.Lock: safe for concurrent coroutines within
a single event loop.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from attendance_sync.core.logging import logger


class InMemoryCircuitBreaker:
    """In-memory implementation of the CircuitBreaker protocol.

    Attributes:
        cooldown_seconds: How long a tripped key stays unavailable.
        failure_threshold: Consecutive failures that trip a key.
    """

    DEFAULT_COOLDOWN_SECONDS = 60.0
    DEFAULT_FAILURE_THRESHOLD = 5

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the in-memory circuit breaker.

        Args:
            cooldown_seconds: Seconds to skip a key after it trips.
            failure_threshold: Consecutive failures needed to trip a key.
            clock: Monotonic clock, injectable for tests.
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._cooldown = cooldown_seconds
        self._threshold = failure_threshold
        self._clock = clock
        self._failure_counts: dict[str, int] = {}
        self._tripped_at: dict[str, float] = {}  # key → monotonic timestamp
        self._lock = asyncio.Lock()

    async def is_available(self, key: str) -> bool:
        """Check if a key is available (not tripped, or cooldown expired).

        When the cooldown has expired the key is half-open: it is allowed
        again, and a single further failure trips it immediately.
        """
        async with self._lock:
            tripped_at = self._tripped_at.get(key)
            if tripped_at is None:
                return True

            elapsed = self._clock() - tripped_at
            if elapsed >= self._cooldown:
                del self._tripped_at[key]
                self._failure_counts[key] = self._threshold - 1
                logger.info(
                    f"[CircuitBreaker] Cooldown expired for '{key}' "
                    f"after {elapsed:.0f}s, allowing retry"
                )
                return True

            return False

    async def record_failure(self, key: str) -> None:
        """Count a failure, tripping the key once the threshold is reached."""
        async with self._lock:
            count = self._failure_counts.get(key, 0) + 1
            self._failure_counts[key] = count
            if count >= self._threshold and key not in self._tripped_at:
                self._tripped_at[key] = self._clock()
                logger.warning(
                    f"[CircuitBreaker] '{key}' tripped after {count} failures, "
                    f"skipping for {self._cooldown:.0f}s"
                )

    async def record_success(self, key: str) -> None:
        """Clear failure state for a key (successful recovery)."""
        async with self._lock:
            self._failure_counts.pop(key, None)
            if self._tripped_at.pop(key, None) is not None:
                logger.info(
                    f"[CircuitBreaker] '{key}' recovered, clearing failure state"
                )

    def failure_count(self, key: str) -> int:
        """Consecutive failures recorded for a key."""
        return self._failure_counts.get(key, 0)

    @property
    def tripped_keys(self) -> dict[str, float]:
        """Snapshot of currently tripped keys and seconds since they tripped.

        Not locked: the read is approximate but safe for diagnostics.
        """
        now = self._clock()
        return {
            key: now - ts for key, ts in self._tripped_at.items() if now - ts < self._cooldown
        }
