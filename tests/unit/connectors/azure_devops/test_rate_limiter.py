"""Unit tests for the async rate limiter.

Tests RateLimiter with:
- Concurrency bound (never more than max_concurrent in flight)
- Local pacing between dispatches
- Server quota headers (throttling set, capped, and cleared)
- NaN handling for malformed headers
- Slot release on failure and cancellation
"""

import asyncio
import math
import time

import pytest

from workitems.connectors.azure_devops.rate_limiter import (
    MAX_QUOTA_WAIT_SECONDS,
    RateLimiter,
    parse_rate_limit_headers,
)

# =============================================================================
# Header Parsing Tests
# =============================================================================


class TestParseRateLimitHeaders:
    """x-ratelimit-* header parsing."""

    def test_case_insensitive(self):
        limits = parse_rate_limit_headers(
            {
                "X-RateLimit-Limit": "200",
                "X-RATELIMIT-REMAINING": "150",
                "x-ratelimit-reset": "1767225600",
                "X-RateLimit-Resource": "core",
            }
        )
        assert limits.limit == 200.0
        assert limits.remaining == 150.0
        assert limits.reset_epoch_seconds == 1767225600.0
        assert limits.resource == "core"
        assert limits.is_malformed is False

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"x-ratelimit-limit": "200"},
            {"x-ratelimit-remaining": "10"},
            {"content-type": "application/json"},
        ],
    )
    def test_missing_required_headers(self, headers):
        assert parse_rate_limit_headers(headers) is None

    def test_malformed_values_become_nan(self):
        limits = parse_rate_limit_headers(
            {"x-ratelimit-limit": "lots", "x-ratelimit-remaining": "few"}
        )
        assert math.isnan(limits.limit)
        assert math.isnan(limits.remaining)
        assert math.isnan(limits.reset_epoch_seconds)
        assert limits.is_malformed is True


# =============================================================================
# Construction Tests
# =============================================================================


class TestConstruction:
    @pytest.mark.parametrize(
        "kwargs",
        [{"max_concurrent": 0}, {"requests_per_second": 0}, {"requests_per_second": -1}],
    )
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            RateLimiter(**kwargs)

    def test_initial_status(self):
        status = RateLimiter(max_concurrent=4, requests_per_second=8).get_rate_limit_status()
        assert status.max_concurrent == 4
        assert status.requests_per_second == 8.0
        assert status.current_server_limits is None
        assert status.is_throttling is False
        assert status.estimated_wait_ms == 0.0
        assert status.in_flight == 0


# =============================================================================
# Execute Tests
# =============================================================================


class TestExecute:
    """Governed execution."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        limiter = RateLimiter(requests_per_second=1000)

        async def call():
            return 42

        assert await limiter.execute(call) == 42

    @pytest.mark.asyncio
    async def test_errors_propagate_unchanged(self):
        limiter = RateLimiter(requests_per_second=1000)
        error = RuntimeError("boom")

        async def call():
            raise error

        with pytest.raises(RuntimeError) as exc_info:
            await limiter.execute(call)
        assert exc_info.value is error
        assert limiter.in_flight == 0

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        """max_concurrent=2 with 5 simultaneous calls never exceeds 2 in flight."""
        limiter = RateLimiter(max_concurrent=2, requests_per_second=1000)
        active = 0
        peak = 0

        async def call(i):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return i

        results = await asyncio.gather(
            *(limiter.execute(lambda i=i: call(i)) for i in range(5))
        )

        assert results == [0, 1, 2, 3, 4]
        assert peak == 2
        assert limiter.in_flight == 0

    @pytest.mark.asyncio
    async def test_pacing_spaces_dispatches(self):
        limiter = RateLimiter(max_concurrent=10, requests_per_second=20)
        dispatched = []

        async def call():
            dispatched.append(time.monotonic())

        await asyncio.gather(*(limiter.execute(call) for _ in range(3)))

        gaps = [b - a for a, b in zip(dispatched, dispatched[1:])]
        assert all(gap >= 0.045 for gap in gaps)

    @pytest.mark.asyncio
    async def test_cancellation_releases_slot(self):
        limiter = RateLimiter(max_concurrent=1, requests_per_second=1000)
        started = asyncio.Event()

        async def blocker():
            started.set()
            await asyncio.sleep(10)

        async def quick():
            return "ok"

        holder = asyncio.create_task(limiter.execute(blocker))
        await started.wait()
        queued = asyncio.create_task(limiter.execute(quick))
        await asyncio.sleep(0)

        queued.cancel()
        holder.cancel()
        for task in (queued, holder):
            with pytest.raises(asyncio.CancelledError):
                await task

        assert limiter.in_flight == 0
        assert await asyncio.wait_for(limiter.execute(quick), timeout=1.0) == "ok"


# =============================================================================
# Server Quota Tests
# =============================================================================


def quota_headers(remaining, reset, limit="200"):
    return {
        "x-ratelimit-limit": str(limit),
        "x-ratelimit-remaining": str(remaining),
        "x-ratelimit-reset": str(reset),
        "x-ratelimit-resource": "work-items",
    }


class TestServerQuota:
    """Throttling driven by x-ratelimit-* headers."""

    def test_throttling_set_then_cleared(self):
        limiter = RateLimiter()

        limiter.update_from_headers(quota_headers(1, time.time() + 30))
        status = limiter.get_rate_limit_status()
        assert status.is_throttling is True
        assert status.estimated_wait_ms > 0
        assert status.current_server_limits.remaining == 1.0

        limiter.update_from_headers(quota_headers(180, time.time() - 1))
        status = limiter.get_rate_limit_status()
        assert status.is_throttling is False
        assert status.estimated_wait_ms == 0.0

    def test_wait_capped(self):
        limiter = RateLimiter()
        limiter.update_from_headers(quota_headers(0, time.time() + 86400))
        status = limiter.get_rate_limit_status()
        assert status.is_throttling is True
        assert status.estimated_wait_ms <= MAX_QUOTA_WAIT_SECONDS * 1000

    def test_past_reset_does_not_throttle(self):
        limiter = RateLimiter()
        limiter.update_from_headers(quota_headers(0, time.time() - 5))
        assert limiter.get_rate_limit_status().is_throttling is False

    def test_healthy_remaining_does_not_throttle(self):
        limiter = RateLimiter()
        limiter.update_from_headers(quota_headers(50, time.time() + 30))
        assert limiter.get_rate_limit_status().is_throttling is False

    def test_nan_remaining_never_throttles(self):
        limiter = RateLimiter()
        limiter.update_from_headers(quota_headers("garbage", time.time() + 30))
        status = limiter.get_rate_limit_status()
        assert math.isnan(status.current_server_limits.remaining)
        assert status.is_throttling is False

    def test_nan_reset_gives_no_wait(self):
        limiter = RateLimiter()
        limiter.update_from_headers(quota_headers(0, "soon"))
        assert limiter.get_rate_limit_status().is_throttling is False

    def test_update_is_idempotent(self):
        limiter = RateLimiter()
        headers = quota_headers(120, 1767225600)
        limiter.update_from_headers(headers)
        first = limiter.get_rate_limit_status().current_server_limits
        limiter.update_from_headers(headers)
        assert limiter.get_rate_limit_status().current_server_limits == first

    def test_missing_headers_keep_previous_limits(self):
        limiter = RateLimiter()
        limiter.update_from_headers(quota_headers(120, 1767225600))
        limiter.update_from_headers({"content-type": "application/json"})
        assert limiter.get_rate_limit_status().current_server_limits.remaining == 120.0

    def test_respect_headers_off_is_noop(self):
        limiter = RateLimiter(respect_headers=False)
        limiter.update_from_headers(quota_headers(0, time.time() + 30))
        status = limiter.get_rate_limit_status()
        assert status.current_server_limits is None
        assert status.is_throttling is False

    @pytest.mark.asyncio
    async def test_execute_waits_for_reset(self):
        limiter = RateLimiter(requests_per_second=1000)
        limiter.update_from_headers(quota_headers(0, time.time() + 0.3))

        async def call():
            return "done"

        start = time.monotonic()
        assert await limiter.execute(call) == "done"
        assert time.monotonic() - start >= 0.2

    @pytest.mark.asyncio
    async def test_fresh_headers_end_wait_early(self):
        limiter = RateLimiter(requests_per_second=1000)
        limiter.update_from_headers(quota_headers(0, time.time() + 30))

        async def call():
            return "done"

        task = asyncio.create_task(limiter.execute(call))
        await asyncio.sleep(0.05)
        assert not task.done()

        limiter.update_from_headers(quota_headers(199, time.time() + 60))
        assert await asyncio.wait_for(task, timeout=2.5) == "done"
