"""Retry policy for batch reads and writes.

Classifies errors as transient or permanent and computes exponential
backoff with jitter. The policy is a pure decision function; the chunk
pipeline drives attempts through tenacity using the hooks exposed here.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
from tenacity import RetryCallState, stop_after_attempt
from tenacity.stop import stop_base

from attendance_sync.core.exceptions import (
    PermanentRecordError,
    SourceAuthenticationError,
    TransientSinkError,
    TransientSourceError,
)
from attendance_sync.platform.sync.config import RetryConfig

# 409 is a transient write conflict on the warehouse side.
TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of ``RetryPolicy.should_retry``."""

    retry: bool
    delay: float
    transient: bool


def is_transient_error(error: BaseException) -> bool:
    """Whether an error is worth retrying.

    Transient: our transient source/sink errors, timeouts, httpx transport
    errors, and HTTP 408/409/425/429/5xx. Everything else, including
    authentication and validation failures, is permanent.
    """
    if isinstance(error, (PermanentRecordError, SourceAuthenticationError)):
        return False
    if isinstance(error, (TransientSourceError, TransientSinkError)):
        return True
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status in TRANSIENT_STATUS_CODES or status >= 500
    return False


class RetryPolicy:
    """Exponential backoff with symmetric jitter.

    ``attempt`` is the 1-based number of the attempt that just failed. A
    transient error is retried while ``attempt <= max_retries``, so
    ``max_retries=3`` allows four attempts in total.
    """

    def __init__(self, config: RetryConfig, rng: Optional[random.Random] = None) -> None:
        self.config = config
        self._rng = rng or random.Random()

    def base_delay(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt ``attempt``, without jitter."""
        raw = self.config.initial_delay_seconds * (
            self.config.backoff_multiplier ** max(attempt - 1, 0)
        )
        return min(self.config.max_delay_seconds, raw)

    def compute_delay(self, attempt: int) -> float:
        """Base delay with up to ``jitter_ratio`` applied in either direction."""
        delay = self.base_delay(attempt)
        ratio = self.config.jitter_ratio
        if ratio:
            delay *= 1 + self._rng.uniform(-ratio, ratio)
        return max(0.0, delay)

    def should_retry(self, attempt: int, error: BaseException) -> RetryDecision:
        """Decide whether failed attempt ``attempt`` should be retried, and after how long."""
        transient = is_transient_error(error)
        if not transient or attempt > self.config.max_retries:
            return RetryDecision(retry=False, delay=0.0, transient=transient)
        return RetryDecision(retry=True, delay=self.compute_delay(attempt), transient=True)

    # ------------------------------------------------------------------
    # tenacity hooks
    # ------------------------------------------------------------------

    def retry_condition(self, retry_state: RetryCallState) -> bool:
        """tenacity ``retry=`` hook: retry transient failures only."""
        if retry_state.outcome is None or not retry_state.outcome.failed:
            return False
        error = retry_state.outcome.exception()
        return error is not None and is_transient_error(error)

    def wait(self, retry_state: RetryCallState) -> float:
        """tenacity ``wait=`` hook."""
        return self.compute_delay(retry_state.attempt_number)

    @property
    def stop(self) -> stop_base:
        """tenacity ``stop=`` hook: one first attempt plus ``max_retries`` retries."""
        return stop_after_attempt(self.config.max_retries + 1)


def log_retry_attempt(logger: Any, stage: str, max_attempts: int) -> Callable[..., None]:
    """Create a before_sleep callback that logs retry attempts.

    Args:
        logger: Logger instance to use
        stage: What was being attempted ("source" or "sink")
        max_attempts: Total attempts allowed, for the log line

    Returns:
        Callable that can be used as before_sleep in AsyncRetrying
    """

    def before_sleep(retry_state: RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        attempt = retry_state.attempt_number
        wait_time = retry_state.next_action.sleep if retry_state.next_action else 0

        if isinstance(exception, httpx.HTTPStatusError):
            error_desc = f"HTTP {exception.response.status_code}"
        elif isinstance(exception, (httpx.TimeoutException, asyncio.TimeoutError)):
            error_desc = f"timeout ({type(exception).__name__})"
        elif isinstance(exception, httpx.RequestError):
            error_desc = f"connection error ({type(exception).__name__})"
        else:
            error_desc = f"{type(exception).__name__}: {exception}"

        logger.warning(
            f"🔄 {stage} call failed ({error_desc}), "
            f"retrying in {wait_time:.1f}s (attempt {attempt}/{max_attempts})"
        )

    return before_sleep
