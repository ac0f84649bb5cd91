"""Circuit breaker spy for orchestrator tests."""

from typing import List, Set


class FakeCircuitBreaker:
    """CircuitBreaker with no timers.

    A key opens on its first recorded failure (or on ``trip``) and closes
    again on ``record_success``. Every call is logged per method so tests
    can assert which schools were checked, failed or recovered.
    """

    def __init__(self) -> None:
        self.open_keys: Set[str] = set()
        self.checks: List[str] = []
        self.failures: List[str] = []
        self.successes: List[str] = []

    async def is_available(self, key: str) -> bool:
        self.checks.append(key)
        return key not in self.open_keys

    async def record_failure(self, key: str) -> None:
        self.failures.append(key)
        self.open_keys.add(key)

    async def record_success(self, key: str) -> None:
        self.successes.append(key)
        self.open_keys.discard(key)

    def trip(self, key: str) -> None:
        """Open ``key`` without logging a failure."""
        self.open_keys.add(key)

    def is_tripped(self, key: str) -> bool:
        return key in self.open_keys

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def success_count(self) -> int:
        return len(self.successes)
