"""Circuit breaker adapters."""

from attendance_sync.adapters.circuit_breaker.fake import FakeCircuitBreaker
from attendance_sync.adapters.circuit_breaker.in_memory import InMemoryCircuitBreaker

__all__ = ["InMemoryCircuitBreaker", "FakeCircuitBreaker"]
