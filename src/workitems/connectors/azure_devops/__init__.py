"""Azure DevOps Work Items integration package.

Provides the rate-limited REST client, batch processor, WIQL builder and
provider that normalizes wire payloads into domain records.
"""

from .auth import PatAuth
from .batch import BatchProcessor, chunk_ids, dedupe_sorted, validate_positive_ids
from .client import AzureDevOpsClient
from .errors import (
    AuthenticationError,
    AzureDevOpsError,
    CircuitOpenError,
    ErrorKind,
    InvalidQueryError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from .provider import AzureDevOpsProvider, normalize_comment, normalize_work_item, parse_tags
from .rate_limiter import RateLimiter, parse_rate_limit_headers
from .resilience import CircuitBreaker, CircuitState, RetryPolicy
from .wiql import build_wiql

__all__ = [
    "AuthenticationError",
    "AzureDevOpsClient",
    "AzureDevOpsError",
    "AzureDevOpsProvider",
    "BatchProcessor",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "ErrorKind",
    "InvalidQueryError",
    "NetworkError",
    "NotFoundError",
    "PatAuth",
    "RateLimitError",
    "RateLimiter",
    "RetryPolicy",
    "ServerError",
    "ValidationError",
    "build_wiql",
    "chunk_ids",
    "dedupe_sorted",
    "normalize_comment",
    "normalize_work_item",
    "parse_rate_limit_headers",
    "parse_tags",
    "validate_positive_ids",
]
