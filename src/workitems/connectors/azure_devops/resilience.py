"""Retry policy and circuit breaker for Azure DevOps transport calls.

The client wraps every HTTP exchange as::

    breaker.check(op) -> retry_policy.run(lambda: limiter.execute(send))

so each retry attempt is paced by the rate limiter like any fresh call, and
an open circuit rejects the call before it reaches the retry loop.

Pattern based on:
- Martin Fowler: https://martinfowler.com/bliki/CircuitBreaker.html
- tenacity AsyncRetrying with exponential backoff + jitter
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ...config import AzureDevOpsConfig
from .errors import CircuitOpenError, NetworkError, ServerError

logger = logging.getLogger("ado_workitems.azure_devops.resilience")

__all__ = ["CircuitBreaker", "CircuitState", "RetryPolicy"]

T = TypeVar("T")


# =============================================================================
# Retry policy
# =============================================================================


def _log_retry(retry_state: RetryCallState) -> None:
    """Log each retry before tenacity sleeps."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "ado_request_retry",
        extra={
            "attempt": retry_state.attempt_number,
            "wait_seconds": round(retry_state.next_action.sleep, 3)
            if retry_state.next_action
            else None,
            "exception_type": type(exception).__name__ if exception else None,
            "error": str(exception) if exception else None,
        },
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Explicit retry policy for one transport call.

    Delay before retry ``n`` (1-based) is
    ``min(base_delay * backoff_factor ** (n - 1), max_delay)`` plus up to
    ``jitter`` seconds of random spread.

    Only connection-level faults are retried by default. Server errors and
    429s surface to the caller, who owns the decision to try again.

    Attributes:
        max_attempts: Total attempts including the first (1 disables retries)
        base_delay: Delay before the first retry, in seconds
        max_delay: Ceiling for a single delay, in seconds
        backoff_factor: Exponential base
        jitter: Upper bound of the random component, in seconds
        retry_on: Exception types that trigger a retry
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    backoff_factor: float = 2.0
    jitter: float = 0.1
    retry_on: tuple[type[BaseException], ...] = field(default=(NetworkError,))

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("retry delays must be >= 0")

    @classmethod
    def from_config(cls, config: AzureDevOpsConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            backoff_factor=config.retry_backoff_factor,
        )

    def should_retry(self, exception: BaseException) -> bool:
        return isinstance(exception, self.retry_on)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.backoff_factor,
                max=self.max_delay,
            )
            + wait_random(0, self.jitter),
            retry=retry_if_exception(self.should_retry),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Await ``fn()`` until it succeeds, fails terminally, or attempts run out.

        The last exception is re-raised unchanged.
        """
        async for attempt in self._retrying():
            with attempt:
                return await fn()


# =============================================================================
# Circuit breaker
# =============================================================================


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class OperationState:
    """State tracking for a single operation key."""

    consecutive_failures: int = 0
    last_failure_time: float = 0.0
    last_success_time: float = 0.0
    state: CircuitState = CircuitState.CLOSED
    half_open_attempts: int = 0


# Failures that say something about the service's health. 4xx responses
# (bad id, bad query, bad PAT) never trip a circuit.
TRANSIENT_FAILURES: tuple[type[BaseException], ...] = (ServerError, NetworkError)


class CircuitBreaker:
    """Per-operation circuit breaker.

    Three states:
    - CLOSED: Normal operation, requests allowed
    - OPEN: Too many consecutive transient failures, fail fast
    - HALF_OPEN: After reset_timeout, allow a limited number of probes

    Operation keys are the client's operation names (``single``, ``batch``,
    ``query``, ``comment``, ``update``), so a failing WIQL endpoint does not
    block single-item lookups.

    Example:
        >>> breaker = CircuitBreaker(failure_threshold=5, reset_timeout=30)
        >>> breaker.check("batch")  # raises CircuitOpenError while open
        >>> breaker.record_success("batch")
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30,
        half_open_max_attempts: int = 1,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit
            reset_timeout: Seconds before transitioning to HALF_OPEN
            half_open_max_attempts: Max probe requests in HALF_OPEN state
        """
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max_attempts = half_open_max_attempts
        self._states: dict[str, OperationState] = {}

        logger.debug(
            "circuit_breaker_initialized",
            extra={
                "failure_threshold": failure_threshold,
                "reset_timeout_seconds": reset_timeout,
                "half_open_attempts": half_open_max_attempts,
            },
        )

    @classmethod
    def from_config(cls, config: AzureDevOpsConfig) -> "CircuitBreaker":
        return cls(
            failure_threshold=config.circuit_breaker_threshold,
            reset_timeout=config.circuit_breaker_reset,
        )

    def _get_state(self, operation: str) -> OperationState:
        # Single event loop: no lock needed
        return self._states.setdefault(operation, OperationState())

    def _seconds_until_probe(self, state: OperationState) -> float:
        elapsed = time.monotonic() - state.last_failure_time
        return max(0.0, self.reset_timeout - elapsed)

    def is_available(self, operation: str) -> bool:
        """Check if operation may proceed, moving OPEN -> HALF_OPEN when due.

        Each True returned in HALF_OPEN consumes one probe.
        """
        state = self._get_state(operation)

        if state.state == CircuitState.CLOSED:
            return True

        if state.state == CircuitState.OPEN:
            if self._seconds_until_probe(state) > 0:
                return False
            state.state = CircuitState.HALF_OPEN
            state.half_open_attempts = 0
            logger.info(
                "circuit_half_open",
                extra={"operation": operation, "timeout_seconds": self.reset_timeout},
            )

        if state.half_open_attempts < self.half_open_max_attempts:
            state.half_open_attempts += 1
            return True
        return False

    def check(self, operation: str) -> None:
        """Raise CircuitOpenError unless the operation may proceed."""
        if self.is_available(operation):
            return
        retry_in = self._seconds_until_probe(self._get_state(operation))
        logger.debug(
            "circuit_open_request_rejected",
            extra={"operation": operation, "time_until_reset": round(retry_in, 3)},
        )
        raise CircuitOpenError(operation, retry_in)

    def record_success(self, operation: str) -> None:
        """Record successful request, closing the circuit."""
        state = self._get_state(operation)
        prev_state = state.state

        state.consecutive_failures = 0
        state.last_success_time = time.monotonic()
        state.state = CircuitState.CLOSED
        state.half_open_attempts = 0

        if prev_state != CircuitState.CLOSED:
            logger.info(
                "circuit_closed",
                extra={"operation": operation, "previous_state": prev_state.value},
            )

    def release_probe(self, operation: str) -> None:
        """Return a HALF_OPEN probe slot when the call ended without a verdict.

        Used for cancellation and unexpected exceptions, which say nothing
        about the service's health.
        """
        state = self._get_state(operation)
        if state.state == CircuitState.HALF_OPEN and state.half_open_attempts > 0:
            state.half_open_attempts -= 1
            logger.debug("circuit_probe_released", extra={"operation": operation})

    def record_failure(self, operation: str, error: BaseException | None = None) -> None:
        """Record a failed request, opening the circuit at the threshold.

        Only transient failures count. Anything else (404, 400, 401) is
        evidence the service is up, so it resets the failure streak instead.
        """
        if error is not None and not isinstance(error, TRANSIENT_FAILURES):
            self.record_success(operation)
            return

        state = self._get_state(operation)
        state.consecutive_failures += 1
        state.last_failure_time = time.monotonic()

        logger.debug(
            "circuit_failure_recorded",
            extra={
                "operation": operation,
                "consecutive_failures": state.consecutive_failures,
                "error_type": type(error).__name__ if error else "unknown",
            },
        )

        if state.state == CircuitState.HALF_OPEN or (
            state.consecutive_failures >= self.failure_threshold
            and state.state != CircuitState.OPEN
        ):
            state.state = CircuitState.OPEN
            logger.warning(
                "circuit_opened",
                extra={
                    "operation": operation,
                    "failures": state.consecutive_failures,
                    "threshold": self.failure_threshold,
                    "timeout_seconds": self.reset_timeout,
                },
            )

    def get_status(self, operation: str) -> dict[str, Any]:
        """Current circuit status for an operation. Does not consume a probe."""
        state = self._get_state(operation)
        return {
            "operation": operation,
            "state": state.state.value,
            "consecutive_failures": state.consecutive_failures,
            "last_failure": state.last_failure_time,
            "last_success": state.last_success_time,
        }
