"""Error taxonomy for the Azure DevOps REST client.

Every transport failure is mapped to one of these before it reaches a
caller; raw httpx exceptions never escape the client. Each error carries a
stable ``kind`` so callers can branch without isinstance ladders.
"""

import json
import re
from enum import Enum
from typing import Any

import httpx

__all__ = [
    "AuthenticationError",
    "AzureDevOpsError",
    "CircuitOpenError",
    "ErrorKind",
    "InvalidQueryError",
    "NetworkError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "ValidationError",
    "error_from_response",
    "error_from_transport",
    "error_summary",
]

_WORK_ITEM_ID_PATTERN = re.compile(r"/workitems?/(\d+)", re.IGNORECASE)


class ErrorKind(str, Enum):
    """Stable, inspectable error categories."""

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    INVALID_QUERY = "invalid_query"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    CIRCUIT_OPEN = "circuit_open"
    HTTP = "http"


class AzureDevOpsError(Exception):
    """Base class for all client errors.

    Also raised directly for HTTP statuses outside the named taxonomy
    (403, 409, ...), with ``kind`` = ErrorKind.HTTP.
    """

    kind: ErrorKind = ErrorKind.HTTP
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: Any = None,
        is_retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details
        if is_retryable is not None:
            self.is_retryable = is_retryable


class ValidationError(AzureDevOpsError):
    """Malformed caller input, detected before any network call."""

    kind = ErrorKind.VALIDATION


class AuthenticationError(AzureDevOpsError):
    """HTTP 401. Never retried."""

    kind = ErrorKind.AUTHENTICATION

    def __init__(
        self,
        message: str = "Authentication failed. Please check your Personal Access Token.",
    ):
        super().__init__(message, status_code=401)


class NotFoundError(AzureDevOpsError):
    """HTTP 404. ``work_item_id`` is set when the URL names one."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Resource not found", work_item_id: int | None = None):
        super().__init__(message, status_code=404)
        self.work_item_id = work_item_id


class InvalidQueryError(AzureDevOpsError):
    """HTTP 400 from the WIQL endpoint: the server rejected the query text."""

    kind = ErrorKind.INVALID_QUERY

    def __init__(self, query: str, message: str = "Invalid WIQL query syntax"):
        super().__init__(message, status_code=400)
        self.query = query


class RateLimitError(AzureDevOpsError):
    """HTTP 429. Carries the server's reset hint when one was sent.

    Attributes:
        retry_after: Seconds to wait (from Retry-After), if present
        reset_epoch_seconds: x-ratelimit-reset value, if present
    """

    kind = ErrorKind.RATE_LIMIT
    is_retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        reset_epoch_seconds: float | None = None,
    ):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after
        self.reset_epoch_seconds = reset_epoch_seconds


class ServerError(AzureDevOpsError):
    """HTTP 5xx. Possibly transient; retrying is the caller's decision."""

    kind = ErrorKind.SERVER
    is_retryable = True

    def __init__(self, message: str = "Azure DevOps server error", status_code: int = 500):
        super().__init__(message, status_code=status_code)


class NetworkError(AzureDevOpsError):
    """Connection-level failure (timeout, DNS, reset)."""

    kind = ErrorKind.NETWORK
    is_retryable = True

    def __init__(self, message: str = "Network error occurred", is_timeout: bool = False):
        super().__init__(message)
        self.is_timeout = is_timeout


class CircuitOpenError(AzureDevOpsError):
    """Operation rejected without I/O because its circuit is open."""

    kind = ErrorKind.CIRCUIT_OPEN
    is_retryable = True

    def __init__(self, operation: str, retry_in_seconds: float):
        super().__init__(
            f"Circuit open for '{operation}' operations; retry in {retry_in_seconds:.1f}s"
        )
        self.operation = operation
        self.retry_in_seconds = retry_in_seconds


# =============================================================================
# Mapping helpers
# =============================================================================


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json() if response.content else None
    except (ValueError, UnicodeDecodeError):
        return response.text


def extract_error_message(data: Any) -> str:
    """Pull a human-readable message out of an error body.

    Azure DevOps usually sends ``{"message": ...}``; some endpoints nest it
    under ``error`` or ``value``.
    """
    if isinstance(data, str):
        return data or "Unknown error occurred"

    if isinstance(data, dict):
        if data.get("message"):
            return str(data["message"])
        for key in ("error", "value"):
            nested = data.get(key)
            if isinstance(nested, dict) and nested.get("message"):
                return str(nested["message"])
        try:
            return json.dumps(data)
        except (TypeError, ValueError):
            return "Unknown error occurred"

    return "Unknown error occurred"


def extract_work_item_id(url: str | httpx.URL | None) -> int | None:
    """Work item id from a ``/workitems/{id}`` URL, if any."""
    if not url:
        return None
    match = _WORK_ITEM_ID_PATTERN.search(str(url))
    return int(match.group(1)) if match else None


def _parse_number(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def error_from_response(
    response: httpx.Response, query: str | None = None
) -> AzureDevOpsError:
    """Map a non-2xx response to the error taxonomy.

    Args:
        response: The failed response
        query: WIQL text when the request hit the query endpoint. A 400 with
            a query is an InvalidQueryError; without one it is a generic
            HTTP error.

    Returns:
        The exception to raise (not raised here)
    """
    status = response.status_code
    data = _parse_body(response)
    message = extract_error_message(data)
    try:
        url = response.request.url
    except RuntimeError:
        # Response built without a request (hand-made responses in tests)
        url = None

    if status == 400 and query is not None:
        return InvalidQueryError(query, message)

    if status == 401:
        return AuthenticationError()

    if status == 404:
        work_item_id = extract_work_item_id(url)
        if work_item_id is not None:
            message = f"Work item {work_item_id} not found"
        return NotFoundError(message, work_item_id=work_item_id)

    if status == 429:
        retry_after = _parse_number(response.headers.get("retry-after"))
        reset = _parse_number(response.headers.get("x-ratelimit-reset"))
        return RateLimitError(message, retry_after=retry_after, reset_epoch_seconds=reset)

    if status >= 500:
        return ServerError(message, status_code=status)

    return AzureDevOpsError(
        message,
        status_code=status,
        details=data,
        is_retryable=status == 408,
    )


def error_from_transport(exc: httpx.HTTPError) -> NetworkError:
    """Map an httpx transport exception, keeping timeouts distinguishable."""
    if isinstance(exc, httpx.TimeoutException):
        return NetworkError(f"Request timeout: {exc}", is_timeout=True)
    return NetworkError(f"Network error: {exc}")


def error_summary(exc: BaseException) -> dict[str, Any]:
    """Log-friendly summary of any exception."""
    if isinstance(exc, AzureDevOpsError):
        return {
            "type": type(exc).__name__,
            "kind": exc.kind.value,
            "message": exc.message,
            "status_code": exc.status_code,
            "is_retryable": exc.is_retryable,
        }
    return {
        "type": type(exc).__name__,
        "kind": "unknown",
        "message": str(exc),
        "status_code": None,
        "is_retryable": False,
    }
