"""
Prometheus metrics for the Azure DevOps work item client.

Defines Counter, Gauge and Histogram metrics for request volume, latency,
error kinds, throttling and batch chunk outcomes.

Naming conventions: snake_case, ado_workitems_ prefix.
"""

import logging

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger("ado_workitems.metrics")

__all__ = [
    "batch_chunks_total",
    "errors_total",
    "in_flight_requests",
    "rate_limit_remaining",
    "record_batch_chunk",
    "record_error",
    "record_request",
    "record_throttle_wait",
    "request_duration_seconds",
    "requests_total",
    "throttle_waits_total",
]

# ==============================================================================
# COUNTERS
# ==============================================================================

requests_total = Counter(
    "ado_workitems_requests_total",
    "Total Azure DevOps REST requests",
    ["operation", "status"],
    # operation: single, batch, query, comment, update, connection
    # status: success, error
)

errors_total = Counter(
    "ado_workitems_errors_total",
    "Errors raised by the REST client, by taxonomy kind",
    ["kind"],
)

throttle_waits_total = Counter(
    "ado_workitems_throttle_waits_total",
    "Times a request was delayed by the rate limiter",
    ["reason"],
    # reason: pacing, server_quota
)

batch_chunks_total = Counter(
    "ado_workitems_batch_chunks_total",
    "Batch chunks processed",
    ["status"],
    # status: success, omitted, failed
)

# ==============================================================================
# GAUGES
# ==============================================================================

rate_limit_remaining = Gauge(
    "ado_workitems_rate_limit_remaining",
    "Last x-ratelimit-remaining value reported by the server",
)

in_flight_requests = Gauge(
    "ado_workitems_in_flight_requests",
    "Requests currently holding a concurrency slot",
)

# ==============================================================================
# HISTOGRAMS
# ==============================================================================

request_duration_seconds = Histogram(
    "ado_workitems_request_duration_seconds",
    "Latency of a single HTTP exchange",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)


def record_request(operation: str, status: str, duration_seconds: float) -> None:
    """Record one HTTP exchange."""
    requests_total.labels(operation=operation, status=status).inc()
    request_duration_seconds.labels(operation=operation).observe(duration_seconds)


def record_error(kind: str) -> None:
    """Record an error raised to a caller."""
    errors_total.labels(kind=kind).inc()


def record_throttle_wait(reason: str) -> None:
    throttle_waits_total.labels(reason=reason).inc()


def record_batch_chunk(status: str) -> None:
    batch_chunks_total.labels(status=status).inc()
