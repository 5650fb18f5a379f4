"""Work item sync orchestrator.

Pulls records matching a Query from a provider and hands them to a store.

Pipeline Flow:
1. Provider query (WIQL) + chunked batch fetch
2. Store normalized records
3. Batch comment fetch (best effort per id)
4. Store comments per work item

Error Handling:
- Record fetch failures propagate: nothing is stored for a failed sync
- Comment storage fails open per work item: logged and recorded in SyncResult.errors
"""

import logging
import time
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from .connectors.azure_devops.provider import AzureDevOpsProvider
from .models import Comment, Query, WorkRecord

logger = logging.getLogger("ado_workitems.sync")

__all__ = ["SyncResult", "WorkItemStore", "WorkItemSync"]


@runtime_checkable
class WorkItemStore(Protocol):
    """Persistence collaborator for normalized records."""

    async def save_work_items(self, records: Sequence[WorkRecord]) -> None: ...

    async def save_comments(
        self, work_item_id: int, comments: Sequence[Comment]
    ) -> None: ...


class SyncResult:
    """Result of a sync operation."""

    def __init__(
        self,
        work_items_synced: int = 0,
        comments_synced: int = 0,
        errors: list[str] | None = None,
        duration_seconds: float = 0.0,
    ):
        self.work_items_synced = work_items_synced
        self.comments_synced = comments_synced
        self.errors = errors or []
        self.duration_seconds = duration_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "work_items_synced": self.work_items_synced,
            "comments_synced": self.comments_synced,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }


class WorkItemSync:
    """Orchestrates provider-to-store synchronization.

    Attributes:
        provider: Source of normalized records
        store: Destination implementing WorkItemStore
    """

    def __init__(self, provider: AzureDevOpsProvider, store: WorkItemStore):
        self.provider = provider
        self.store = store

    async def sync(self, query: Query, include_comments: bool = True) -> SyncResult:
        """Fetch records matching ``query`` and store them.

        Args:
            query: Domain query (a query without filters syncs nothing)
            include_comments: Also fetch and store comments

        Returns:
            SyncResult with counts and per-id comment errors

        Raises:
            AzureDevOpsError: If the query or record fetch fails
        """
        start = time.monotonic()
        result = SyncResult()

        records = await self.provider.fetch_work_items(query)
        if records:
            await self.store.save_work_items(records)
        result.work_items_synced = len(records)

        if include_comments and records:
            ids = [record.id for record in records]
            comments_by_id = await self.provider.get_comments_batch(ids)
            for work_item_id, comments in comments_by_id.items():
                try:
                    await self.store.save_comments(work_item_id, comments)
                except Exception as e:
                    # Fail-open: log error, continue to next work item
                    result.errors.append(f"work item {work_item_id}: {e!s}")
                    logger.warning(
                        "comments_store_failed",
                        extra={"work_item_id": work_item_id, "error": str(e)},
                    )
                    continue
                result.comments_synced += len(comments)

        result.duration_seconds = round(time.monotonic() - start, 3)
        logger.info("work_item_sync_complete", extra=result.to_dict())
        return result
