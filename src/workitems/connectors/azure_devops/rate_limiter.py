"""Async rate limiter for Azure DevOps REST calls.

Three governors compose, most restrictive wins:

1. Concurrency: at most ``max_concurrent`` calls hold a slot; the rest
   queue FIFO on an asyncio.Semaphore.
2. Local pacing: dispatches are spaced at least ``1 / requests_per_second``
   seconds apart.
3. Server quota: x-ratelimit-* response headers are recorded; while
   ``remaining`` is at or below QUOTA_SAFETY_REMAINING and the reset time is
   in the future, new dispatches wait for the reset (capped at
   MAX_QUOTA_WAIT_SECONDS).

The limiter never retries or reinterprets errors from the governed call;
that belongs to the client's RetryPolicy.

Malformed numeric headers are recorded as NaN. A NaN ``remaining`` never
triggers throttling and a NaN reset yields no quota wait.
"""

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import TypeVar

from ...metrics import in_flight_requests, rate_limit_remaining, record_throttle_wait
from ...models import RateLimitStatus, ServerLimits

logger = logging.getLogger("ado_workitems.azure_devops.rate_limiter")

__all__ = [
    "MAX_QUOTA_WAIT_SECONDS",
    "QUOTA_SAFETY_REMAINING",
    "RateLimiter",
    "parse_rate_limit_headers",
]

T = TypeVar("T")

# Throttle once the server reports this many (or fewer) calls left
QUOTA_SAFETY_REMAINING = 1

# Upper bound on a single quota wait; guards against absurd reset values
MAX_QUOTA_WAIT_SECONDS = 60.0

# Quota waits are sliced so fresh headers can end them early
QUOTA_POLL_SECONDS = 1.0

HEADER_LIMIT = "x-ratelimit-limit"
HEADER_REMAINING = "x-ratelimit-remaining"
HEADER_RESET = "x-ratelimit-reset"
HEADER_RESOURCE = "x-ratelimit-resource"


def _to_number(name: str, value: str | None) -> float:
    if value is None:
        return math.nan
    try:
        return float(str(value).strip())
    except ValueError:
        logger.warning(
            "rate_limit_header_malformed",
            extra={"header": name, "value": str(value)[:100]},
        )
        return math.nan


def parse_rate_limit_headers(headers: Mapping[str, str]) -> ServerLimits | None:
    """Extract quota values from response headers.

    Header names match case-insensitively. Returns None unless both
    x-ratelimit-limit and x-ratelimit-remaining are present.
    """
    lowered = {str(k).lower(): v for k, v in headers.items()}

    limit = lowered.get(HEADER_LIMIT)
    remaining = lowered.get(HEADER_REMAINING)
    if not limit or not remaining:
        return None

    return ServerLimits(
        limit=_to_number(HEADER_LIMIT, limit),
        remaining=_to_number(HEADER_REMAINING, remaining),
        reset_epoch_seconds=_to_number(HEADER_RESET, lowered.get(HEADER_RESET)),
        resource=lowered.get(HEADER_RESOURCE),
    )


class RateLimiter:
    """Concurrency + pacing + server-quota governor for async calls.

    Example:
        >>> limiter = RateLimiter(max_concurrent=4, requests_per_second=10)
        >>> result = await limiter.execute(lambda: client.get(url))
        >>> limiter.update_from_headers(result.headers)
    """

    def __init__(
        self,
        max_concurrent: int = 10,
        requests_per_second: float = 5.0,
        respect_headers: bool = True,
    ):
        """Initialize rate limiter.

        Args:
            max_concurrent: Maximum calls executing at once
            requests_per_second: Long-run dispatch ceiling
            respect_headers: Throttle on server quota headers

        Raises:
            ValueError: If max_concurrent < 1 or requests_per_second <= 0
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        if not requests_per_second > 0:
            raise ValueError(
                f"requests_per_second must be > 0, got {requests_per_second}"
            )

        self.max_concurrent = max_concurrent
        self.requests_per_second = float(requests_per_second)
        self.respect_headers = respect_headers

        self._slots = asyncio.Semaphore(max_concurrent)
        # Serializes dispatch decisions so spacing is exact under contention
        self._dispatch_lock = asyncio.Lock()
        self._last_dispatch: float | None = None  # time.monotonic()
        self._in_flight = 0
        self._server_limits: ServerLimits | None = None

        logger.debug(
            "rate_limiter_initialized",
            extra={
                "max_concurrent": max_concurrent,
                "requests_per_second": self.requests_per_second,
                "respect_headers": respect_headers,
            },
        )

    @property
    def min_interval(self) -> float:
        """Minimum seconds between two dispatches."""
        return 1.0 / self.requests_per_second

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` under all three governors.

        The slot is released on every exit path, including cancellation.
        Exceptions from ``fn`` propagate unchanged.
        """
        async with self._slots:
            self._in_flight += 1
            in_flight_requests.inc()
            try:
                await self._wait_for_turn()
                return await fn()
            finally:
                self._in_flight -= 1
                in_flight_requests.dec()

    async def _wait_for_turn(self) -> None:
        async with self._dispatch_lock:
            quota_wait = self._quota_wait_seconds(time.time())
            if quota_wait > 0:
                record_throttle_wait("server_quota")
                logger.warning(
                    "rate_limit_throttling",
                    extra={
                        "wait_seconds": round(quota_wait, 3),
                        "remaining": self._server_limits.remaining,
                        "resource": self._server_limits.resource,
                    },
                )
                deadline = time.monotonic() + quota_wait
                while self._quota_wait_seconds(time.time()) > 0:
                    left = deadline - time.monotonic()
                    if left <= 0:
                        break
                    await asyncio.sleep(min(left, QUOTA_POLL_SECONDS))

            pacing_wait = self._pacing_wait_seconds(time.monotonic())
            if pacing_wait > 0:
                record_throttle_wait("pacing")
                await asyncio.sleep(pacing_wait)

            self._last_dispatch = time.monotonic()

    def _pacing_wait_seconds(self, now: float) -> float:
        if self._last_dispatch is None:
            return 0.0
        return max(0.0, self.min_interval - (now - self._last_dispatch))

    def _quota_wait_seconds(self, now_epoch: float) -> float:
        limits = self._server_limits
        if not self.respect_headers or limits is None:
            return 0.0
        # NaN compares False here, so a garbled remaining never throttles
        if not limits.remaining <= QUOTA_SAFETY_REMAINING:
            return 0.0
        if math.isnan(limits.reset_epoch_seconds):
            return 0.0
        wait = limits.reset_epoch_seconds - now_epoch
        if wait <= 0:
            return 0.0
        return min(wait, MAX_QUOTA_WAIT_SECONDS)

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Record server quota headers from a response.

        No-op when respect_headers is off or limit/remaining are absent.
        Applying the same headers twice leaves the same state.
        """
        if not self.respect_headers:
            return

        limits = parse_rate_limit_headers(headers)
        if limits is None:
            return

        self._server_limits = limits

        if not math.isnan(limits.remaining):
            rate_limit_remaining.set(limits.remaining)
        if limits.remaining <= QUOTA_SAFETY_REMAINING:
            logger.warning(
                "rate_limit_quota_low",
                extra={
                    "limit": limits.limit,
                    "remaining": limits.remaining,
                    "reset": limits.reset_epoch_seconds,
                    "resource": limits.resource,
                },
            )

    def get_rate_limit_status(self) -> RateLimitStatus:
        """Snapshot of the limiter. Pure read."""
        quota_wait = self._quota_wait_seconds(time.time())
        pacing_wait = self._pacing_wait_seconds(time.monotonic())
        return RateLimitStatus(
            max_concurrent=self.max_concurrent,
            requests_per_second=self.requests_per_second,
            current_server_limits=self._server_limits,
            is_throttling=quota_wait > 0,
            estimated_wait_ms=max(quota_wait, pacing_wait) * 1000.0,
            in_flight=self._in_flight,
        )
