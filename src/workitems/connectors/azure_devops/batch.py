"""Batch processing for multi-id work item operations.

Ids are deduplicated and sorted before chunking so identical id sets always
produce identical requests, whatever order or duplication the caller used.
Chunks run with bounded concurrency and their results are merged in chunk
order, even when chunks finish out of order.
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TypeVar

from ...metrics import record_batch_chunk
from ...models import BatchStats, ErrorPolicy
from .errors import ValidationError, error_summary
from .rate_limiter import RateLimiter

logger = logging.getLogger("ado_workitems.azure_devops.batch")

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "BatchProcessor",
    "chunk_ids",
    "dedupe_sorted",
    "is_valid_id",
    "validate_positive_ids",
]

T = TypeVar("T")

# Azure DevOps batch endpoint accepts at most 200 ids per call
DEFAULT_CHUNK_SIZE = 200
DEFAULT_MAX_CONCURRENCY = 3


def is_valid_id(value: object) -> bool:
    """True for positive ints (bool excluded)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_positive_ids(ids: Iterable[object]) -> list[int]:
    """Return ids as a list, or raise if any id is not a positive int.

    Raises:
        ValidationError: Listing how many ids were invalid
    """
    ids = list(ids)
    invalid = [i for i in ids if not is_valid_id(i)]
    if invalid:
        raise ValidationError(
            f"All work item IDs must be greater than 0. "
            f"Found {len(invalid)} invalid items."
        )
    return ids


def dedupe_sorted(ids: Iterable[int]) -> list[int]:
    return sorted(set(ids))


def chunk_ids(ids: Sequence[int], size: int) -> list[list[int]]:
    """Split into consecutive chunks of at most ``size`` ids."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    return [list(ids[i : i + size]) for i in range(0, len(ids), size)]


class BatchProcessor:
    """Drives chunked fetches through the rate limiter.

    Attributes:
        rate_limiter: Optional limiter every chunk call goes through. Leave
            unset when ``fetch_chunk`` is already governed (as the REST
            client's requests are), otherwise one chunk holds two slots.
        chunk_size: Default ids per chunk
        max_concurrency: Chunks in flight at once
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.rate_limiter = rate_limiter
        self.chunk_size = chunk_size
        self.max_concurrency = max_concurrency

    async def process_batches(
        self,
        ids: Iterable[int] | None,
        fetch_chunk: Callable[[list[int]], Awaitable[Sequence[T]]],
        chunk_size: int | None = None,
        error_policy: ErrorPolicy = ErrorPolicy.FAIL,
    ) -> list[T]:
        """Fetch all ids in chunks and merge the results.

        Args:
            ids: Ids to fetch (duplicates and order are irrelevant)
            fetch_chunk: Coroutine function fetching one chunk
            chunk_size: Override of the default chunk size
            error_policy: FAIL aborts on the first failed chunk and discards
                everything fetched so far; OMIT contributes [] for a failed
                chunk and carries on

        Returns:
            Results concatenated in ascending chunk order
        """
        unique = dedupe_sorted(ids or ())
        if not unique:
            return []

        chunks = chunk_ids(unique, chunk_size or self.chunk_size)
        policy = ErrorPolicy(error_policy)
        gate = asyncio.Semaphore(self.max_concurrency)

        async def run_chunk(index: int, chunk: list[int]) -> list[T]:
            async with gate:
                try:
                    if self.rate_limiter is not None:
                        result = await self.rate_limiter.execute(
                            lambda: fetch_chunk(chunk)
                        )
                    else:
                        result = await fetch_chunk(chunk)
                except Exception as e:
                    if policy is ErrorPolicy.OMIT:
                        record_batch_chunk("omitted")
                        logger.warning(
                            "batch_chunk_omitted",
                            extra={
                                "chunk_index": index,
                                "chunk_size": len(chunk),
                                "first_id": chunk[0],
                                "error": error_summary(e),
                            },
                        )
                        return []
                    record_batch_chunk("failed")
                    raise
                record_batch_chunk("success")
                return list(result)

        tasks = [
            asyncio.ensure_future(run_chunk(index, chunk))
            for index, chunk in enumerate(chunks)
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # First failure (or cancellation) wins; nothing partial escapes
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        merged: list[T] = []
        for chunk_result in results:
            merged.extend(chunk_result)

        logger.debug(
            "batch_complete",
            extra={
                "unique_ids": len(unique),
                "chunks": len(chunks),
                "results": len(merged),
            },
        )
        return merged

    def get_batch_stats(self, total_items: int) -> BatchStats:
        """Planned request shape for ``total_items`` unique ids."""
        total_batches = math.ceil(total_items / self.chunk_size) if total_items > 0 else 0
        return BatchStats(
            total_items=total_items,
            total_batches=total_batches,
            batch_size=self.chunk_size,
            max_concurrency=self.max_concurrency,
            concurrent_rounds=math.ceil(total_batches / self.max_concurrency),
            estimated_request_count=total_batches,
        )
