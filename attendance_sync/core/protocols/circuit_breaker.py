"""CircuitBreaker protocol for source failover.

When the SIS keeps failing for one school (expired credentials for a site,
a school-specific outage), the circuit breaker records the failures and,
once a threshold is reached, skips that school for a cooldown period. This
prevents burning retries on chunks that are known to fail.

After the cooldown expires, the school is tried again ("half-open" state).
A successful chunk clears the failure state immediately.

Usage:
    key = f"school:{chunk.school_code or '*'}"
    if await circuit_breaker.is_available(key):
        try:
            await pipeline.run(chunk)
            await circuit_breaker.record_success(key)
        except SourceChunkError:
            await circuit_breaker.record_failure(key)
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class CircuitBreaker(Protocol):
    """Protocol for per-key failure tracking.

    Implementations decide when repeated failures trip a key and how long
    it stays unavailable.
    """

    async def is_available(self, key: str) -> bool:
        """Check if a key is available (not tripped, or cooldown expired).

        Args:
            key: Unique identifier, e.g. ``school:RMS``.

        Returns:
            True if work for the key should be attempted.
        """
        ...

    async def record_failure(self, key: str) -> None:
        """Record a failure for the key, possibly tripping it.

        Args:
            key: Unique identifier for the key.
        """
        ...

    async def record_success(self, key: str) -> None:
        """Clear failure state for the key.

        Args:
            key: Unique identifier for the key.
        """
        ...
