"""Azure DevOps Work Items REST client.

Provides an async httpx-based client for the Work Items REST API with PAT
Basic Auth. Every HTTP exchange passes through, in order:

1. the per-operation circuit breaker (fail fast while open)
2. the retry policy (connection-level faults only)
3. the rate limiter (concurrency, pacing, server quota)

Responses feed the limiter's quota tracking whether they succeed or not, and
every failure is mapped to the error taxonomy in ``errors`` before it leaves
this module.

Reference: https://learn.microsoft.com/rest/api/azure/devops/wit/
"""

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import replace
from typing import Any, TypeVar
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PayloadValidationError

from ...config import AzureDevOpsConfig
from ...metrics import record_error, record_request
from ...models import (
    BatchOptions,
    BatchStats,
    ConnectionInfo,
    ErrorPolicy,
    RateLimitStatus,
    WorkItemExpand,
    WorkItemReference,
)
from .auth import PatAuth
from .batch import BatchProcessor, dedupe_sorted, is_valid_id, validate_positive_ids
from .errors import (
    AzureDevOpsError,
    CircuitOpenError,
    ValidationError,
    error_from_response,
    error_from_transport,
    error_summary,
)
from .rate_limiter import RateLimiter
from .resilience import CircuitBreaker, RetryPolicy
from .schema import (
    CommentsResponse,
    WiqlResult,
    WireComment,
    WireWorkItem,
    WorkItemBatchResponse,
)

logger = logging.getLogger("ado_workitems.azure_devops.client")

__all__ = ["AzureDevOpsClient", "MAX_BATCH_IDS"]

ModelT = TypeVar("ModelT", bound=BaseModel)

# Server-side ceiling for ids in one GET /_apis/wit/workitems call
MAX_BATCH_IDS = 200

JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"


def _validate_work_item_id(work_item_id: object) -> int:
    if not is_valid_id(work_item_id):
        raise ValidationError("Work item ID must be a positive integer")
    return work_item_id


def _parse(model: type[ModelT], data: Any) -> ModelT:
    """Validate a response body, mapping schema drift to AzureDevOpsError."""
    try:
        return model.model_validate(data)
    except PayloadValidationError as e:
        raise AzureDevOpsError(
            f"Unexpected {model.__name__} payload from Azure DevOps",
            details=e.errors(include_url=False),
        ) from e


class AzureDevOpsClient:
    """Rate-limited batch client for Azure DevOps work items.

    Uses a long-lived httpx.AsyncClient with connection pooling. All inputs
    are validated before any network call, so a ValidationError always
    means zero requests were sent.

    Attributes:
        config: Configuration this client was built from
        auth: Header and URL builder
        rate_limiter: Shared governor for every request
        retry_policy: Retry policy applied per HTTP exchange
        circuit_breaker: Per-operation breaker
        batch_processor: Chunking driver for multi-id fetches
        client: Underlying httpx.AsyncClient

    Example:
        >>> async with AzureDevOpsClient(get_config()) as client:
        ...     refs = await client.query_work_items("SELECT [System.Id] FROM WorkItems")
        ...     items = await client.batch_get_work_items([r.id for r in refs])
    """

    def __init__(
        self,
        config: AzureDevOpsConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Credentials and tuning
            http_client: Pre-built httpx client (tests, shared pools). The
                caller keeps ownership and must close it.
            rate_limiter: Override of the limiter built from config
            retry_policy: Override of the policy built from config
            circuit_breaker: Override of the breaker built from config

        Raises:
            ValidationError: If organization, project or PAT is missing
        """
        self.config = config
        self.auth = PatAuth.from_config(config)
        self.rate_limiter = rate_limiter or RateLimiter(
            max_concurrent=config.max_concurrent,
            requests_per_second=config.requests_per_second,
            respect_headers=config.respect_headers,
        )
        self.retry_policy = retry_policy or RetryPolicy.from_config(config)
        self.circuit_breaker = circuit_breaker or CircuitBreaker.from_config(config)
        # No limiter here: each chunk fetch already goes through _request
        self.batch_processor = BatchProcessor(
            chunk_size=config.batch_size,
            max_concurrency=config.batch_max_concurrency,
        )
        self._headers = self.auth.auth_headers()

        self._owns_client = http_client is None
        if http_client is None:
            timeout_config = httpx.Timeout(
                connect=5.0,  # Connection establishment timeout
                read=config.request_timeout,  # Read timeout for API responses
                write=10.0,  # Write timeout for request body
                pool=5.0,  # Pool acquisition timeout
            )
            limits = httpx.Limits(
                max_keepalive_connections=config.max_concurrent,
                max_connections=config.max_concurrent * 2,
                keepalive_expiry=30.0,
            )
            http_client = httpx.AsyncClient(timeout=timeout_config, limits=limits)
        self.client = http_client

        logger.debug(
            "ado_client_initialized",
            extra={
                "organization": self.auth.organization,
                "project": self.auth.project,
                "api_version": self.auth.api_version,
            },
        )

    # =========================================================================
    # Transport
    # =========================================================================

    async def _send(
        self,
        operation: str,
        method: str,
        url: str,
        json: Any = None,
        headers: dict[str, str] | None = None,
        query: str | None = None,
    ) -> Any:
        """One HTTP exchange. Called under the rate limiter."""
        request_headers = {**self._headers, **(headers or {})}
        start = time.perf_counter()
        try:
            response = await self.client.request(
                method, url, json=json, headers=request_headers
            )
        except httpx.HTTPError as e:
            record_request(operation, "error", time.perf_counter() - start)
            error = error_from_transport(e)
            logger.warning(
                "ado_request_failed",
                extra={"operation": operation, "method": method, "error": error_summary(error)},
            )
            raise error from e
        duration = time.perf_counter() - start

        self.rate_limiter.update_from_headers(response.headers)

        if not response.is_success:
            record_request(operation, "error", duration)
            error = error_from_response(response, query=query)
            logger.warning(
                "ado_request_failed",
                extra={"operation": operation, "method": method, "error": error_summary(error)},
            )
            raise error

        record_request(operation, "success", duration)
        logger.debug(
            "ado_request_complete",
            extra={
                "operation": operation,
                "method": method,
                "status_code": response.status_code,
                "duration_ms": round(duration * 1000, 1),
            },
        )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise AzureDevOpsError(
                "Invalid JSON in Azure DevOps response",
                status_code=response.status_code,
            ) from e

    async def _request(
        self,
        operation: str,
        method: str,
        url: str,
        json: Any = None,
        headers: dict[str, str] | None = None,
        query: str | None = None,
    ) -> Any:
        """Breaker check, then retry policy around the rate-limited exchange.

        Args:
            operation: Metrics/breaker key (single, batch, query, comment, update)
            method: HTTP method
            url: Absolute URL from PatAuth.build_url
            json: JSON body
            headers: Extra headers (override the auth defaults)
            query: WIQL text, so a 400 maps to InvalidQueryError

        Returns:
            Decoded JSON body, or None for an empty body
        """
        try:
            self.circuit_breaker.check(operation)
        except CircuitOpenError as e:
            record_error(e.kind.value)
            raise

        try:
            data = await self.retry_policy.run(
                lambda: self.rate_limiter.execute(
                    lambda: self._send(operation, method, url, json, headers, query)
                )
            )
        except AzureDevOpsError as e:
            self.circuit_breaker.record_failure(operation, e)
            record_error(e.kind.value)
            raise
        except BaseException:
            # Cancelled or crashed mid-call: no outcome to record
            self.circuit_breaker.release_probe(operation)
            raise

        self.circuit_breaker.record_success(operation)
        return data

    # =========================================================================
    # Work items
    # =========================================================================

    async def get_work_item(
        self, work_item_id: int, expand: WorkItemExpand | str | None = None
    ) -> WireWorkItem:
        """Fetch one work item.

        Raises:
            ValidationError: If work_item_id is not a positive int
            NotFoundError: If the work item does not exist
        """
        _validate_work_item_id(work_item_id)
        params = {"$expand": WorkItemExpand(expand).value} if expand else None

        url = self.auth.build_url(f"/_apis/wit/workitems/{work_item_id}", params)
        data = await self._request("single", "GET", url)
        return _parse(WireWorkItem, data)

    async def query_work_items(self, wiql: str) -> list[WorkItemReference]:
        """Run a WIQL query and return the matching work item references.

        Raises:
            ValidationError: If wiql is empty after trimming
            InvalidQueryError: If the server rejects the query (HTTP 400)
        """
        if not isinstance(wiql, str) or not wiql.strip():
            raise ValidationError("WIQL query cannot be empty")

        url = self.auth.build_url("/_apis/wit/wiql")
        data = await self._request(
            "query", "POST", url, json={"query": wiql}, query=wiql
        )
        result = _parse(WiqlResult, data)
        return [WorkItemReference(id=ref.id, url=ref.url) for ref in result.work_items]

    async def get_work_items_batch(
        self,
        ids: Iterable[int] | None,
        options: BatchOptions | None = None,
    ) -> list[WireWorkItem]:
        """Fetch up to MAX_BATCH_IDS work items in a single request.

        Ids are deduplicated and sorted. With ErrorPolicy.OMIT a failed
        request yields [] instead of raising.

        Raises:
            ValidationError: If any id is not positive, or more than
                MAX_BATCH_IDS unique ids were given
        """
        options = options or BatchOptions()
        if not ids:
            return []

        unique = dedupe_sorted(validate_positive_ids(ids))
        if len(unique) > MAX_BATCH_IDS:
            raise ValidationError(
                f"At most {MAX_BATCH_IDS} ids per request, got {len(unique)}. "
                f"Use batch_get_work_items for larger sets."
            )

        params = {"ids": ",".join(str(i) for i in unique), **options.to_params()}
        url = self.auth.build_url("/_apis/wit/workitems", params)

        try:
            data = await self._request("batch", "GET", url)
        except AzureDevOpsError as e:
            if options.error_policy is ErrorPolicy.OMIT:
                logger.warning(
                    "batch_request_omitted",
                    extra={"id_count": len(unique), "error": error_summary(e)},
                )
                return []
            raise
        return _parse(WorkItemBatchResponse, data).value

    async def batch_get_work_items(
        self,
        ids: Iterable[int] | None,
        options: BatchOptions | None = None,
    ) -> list[WireWorkItem]:
        """Fetch any number of work items in chunks of ``config.batch_size``.

        All ids are validated before dedupe and before any request. Results
        come back in ascending id order. ``$expand`` defaults to ``all``
        unless a field list is given (the server rejects both together).

        Raises:
            ValidationError: If any id is not a positive int
        """
        if not ids:
            return []
        valid = validate_positive_ids(ids)

        options = options or BatchOptions()
        if options.expand is None and not options.fields:
            options = replace(options, expand=WorkItemExpand.ALL)
        # Chunk failures are handled by the processor according to the policy
        chunk_options = replace(options, error_policy=ErrorPolicy.FAIL)

        return await self.batch_processor.process_batches(
            valid,
            lambda chunk: self.get_work_items_batch(chunk, chunk_options),
            error_policy=options.error_policy,
        )

    async def link_work_item_to_pull_request(
        self, work_item_id: int, pull_request_url: str
    ) -> WireWorkItem:
        """Add a Hyperlink relation pointing at a pull request.

        Raises:
            ValidationError: If the id is invalid or the URL is not absolute http(s)
        """
        _validate_work_item_id(work_item_id)
        if not isinstance(pull_request_url, str) or not pull_request_url.strip():
            raise ValidationError("Pull request URL cannot be empty")
        pull_request_url = pull_request_url.strip()
        parsed = urlparse(pull_request_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Invalid pull request URL format")

        patch = [
            {
                "op": "add",
                "path": "/relations/-",
                "value": {
                    "rel": "Hyperlink",
                    "url": pull_request_url,
                    "attributes": {"comment": "Pull Request"},
                },
            }
        ]
        url = self.auth.build_url(f"/_apis/wit/workItems/{work_item_id}")
        data = await self._request(
            "update",
            "PATCH",
            url,
            json=patch,
            headers={"Content-Type": JSON_PATCH_CONTENT_TYPE},
        )
        logger.info(
            "work_item_linked_to_pull_request",
            extra={"work_item_id": work_item_id, "pull_request_url": pull_request_url},
        )
        return _parse(WireWorkItem, data)

    # =========================================================================
    # Comments
    # =========================================================================

    async def get_work_item_comments(self, work_item_id: int) -> list[WireComment]:
        """Fetch the comments of one work item.

        Raises:
            ValidationError: If work_item_id is not a positive int
            NotFoundError: If the work item does not exist
        """
        _validate_work_item_id(work_item_id)
        url = self.auth.build_url(f"/_apis/wit/workItems/{work_item_id}/comments")
        data = await self._request("comment", "GET", url)
        return _parse(CommentsResponse, data).comments

    async def add_work_item_comment(self, work_item_id: int, text: str) -> WireComment:
        """Post a comment (text is trimmed).

        Raises:
            ValidationError: If the id is invalid or text is blank
        """
        _validate_work_item_id(work_item_id)
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Comment text cannot be empty")

        url = self.auth.build_url(f"/_apis/wit/workItems/{work_item_id}/comments")
        data = await self._request("comment", "POST", url, json={"text": text.strip()})
        return _parse(WireComment, data)

    async def batch_get_comments(
        self, ids: Iterable[int] | None
    ) -> dict[int, list[WireComment]]:
        """Fetch comments for many work items, one request per unique id.

        Best effort: an id whose fetch fails is logged and maps to [].
        At most ``config.comment_concurrency`` fetches are in flight.

        Raises:
            ValidationError: If any id is not a positive int
        """
        if not ids:
            return {}
        unique = dedupe_sorted(validate_positive_ids(ids))
        gate = asyncio.Semaphore(self.config.comment_concurrency)

        async def fetch(work_item_id: int) -> tuple[int, list[WireComment]]:
            async with gate:
                try:
                    return work_item_id, await self.get_work_item_comments(work_item_id)
                except AzureDevOpsError as e:
                    logger.warning(
                        "comments_fetch_failed",
                        extra={"work_item_id": work_item_id, "error": error_summary(e)},
                    )
                    return work_item_id, []

        results = await asyncio.gather(*(fetch(i) for i in unique))
        return dict(results)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    async def test_connection(self) -> dict[str, Any]:
        """Test connectivity and PAT validity against the organization.

        Sends GET /_apis/projects (organization level).

        Returns:
            dict with keys:
                - success (bool): True if authenticated successfully
                - error (str | None): Error message if failed

        Example:
            >>> result = await client.test_connection()
            >>> if not result["success"]:
            ...     print(result["error"])
        """
        url = self.auth.build_url("/_apis/projects", project_scoped=False)
        try:
            await self._request("connection", "GET", url)
        except AzureDevOpsError as e:
            logger.error("ado_connection_failed", extra={"error": error_summary(e)})
            return {"success": False, "error": e.message}
        return {"success": True, "error": None}

    def get_rate_limit_status(self) -> RateLimitStatus:
        return self.rate_limiter.get_rate_limit_status()

    def get_connection_info(self) -> ConnectionInfo:
        return self.auth.connection_info()

    def get_batch_stats(self, total_items: int) -> BatchStats:
        return self.batch_processor.get_batch_stats(total_items)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "AzureDevOpsClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
