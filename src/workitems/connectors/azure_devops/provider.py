"""Work item provider: domain queries in, normalized records out.

The provider is the only layer that knows about both the domain models
(Query, WorkRecord, Comment) and the Azure DevOps wire schema. It builds
WIQL from a Query, drives the REST client, and projects wire payloads onto
immutable records while keeping the full payload in ``raw_fields``.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ...__version__ import __version__
from ...config import AzureDevOpsConfig
from ...models import (
    UNASSIGNED,
    Comment,
    ProviderInfo,
    Query,
    WorkItemExpand,
    WorkRecord,
)
from .batch import is_valid_id
from .client import AzureDevOpsClient
from .errors import NotFoundError
from .schema import WireComment, WireIdentity, WireWorkItem
from .wiql import build_wiql, has_filters

logger = logging.getLogger("ado_workitems.azure_devops.provider")

__all__ = [
    "PROVIDER_NAME",
    "UNKNOWN_AUTHOR",
    "AzureDevOpsProvider",
    "extract_person_name",
    "normalize_comment",
    "normalize_work_item",
    "parse_tags",
]

PROVIDER_NAME = "Azure DevOps REST API Provider"
UNKNOWN_AUTHOR = "Unknown"
TAG_DELIMITER = ";"


# =============================================================================
# Normalization
# =============================================================================


def extract_person_name(person: WireIdentity | Mapping[str, Any] | str | None) -> str | None:
    """Display name, else unique name, of an identity; plain strings as-is."""
    if not person:
        return None
    if isinstance(person, str):
        return person
    if isinstance(person, WireIdentity):
        return person.display_name or person.unique_name or None
    return person.get("displayName") or person.get("uniqueName") or None


def parse_tags(raw: str | None) -> tuple[str, ...]:
    """Split a System.Tags value; blank entries are dropped.

    >>> parse_tags("backend; api ;;")
    ('backend', 'api')
    >>> parse_tags("  ;  ; ")
    ()
    """
    if not raw:
        return ()
    return tuple(tag.strip() for tag in str(raw).split(TAG_DELIMITER) if tag.strip())


def normalize_work_item(item: WireWorkItem) -> WorkRecord:
    fields = item.fields
    raw_fields = {
        **fields,
        "_links": item.links,
        "relations": item.relations,
        "url": item.url,
        "rev": item.rev,
    }
    return WorkRecord(
        id=item.id,
        revision=item.rev,
        title=fields.get("System.Title") or "",
        state=fields.get("System.State") or "",
        type=fields.get("System.WorkItemType") or "",
        assignee=extract_person_name(fields.get("System.AssignedTo")) or UNASSIGNED,
        created_at=fields.get("System.CreatedDate") or "",
        changed_at=fields.get("System.ChangedDate") or "",
        description=fields.get("System.Description"),
        tags=parse_tags(fields.get("System.Tags")),
        raw_fields=raw_fields,
    )


def normalize_comment(comment: WireComment, work_item_id: int | None = None) -> Comment:
    return Comment(
        id=comment.id,
        work_item_id=work_item_id or comment.work_item_id,
        text=comment.text,
        author=extract_person_name(comment.created_by) or UNKNOWN_AUTHOR,
        created_at=comment.created_date or "",
        modified_at=comment.modified_date,
        raw_fields=comment.to_raw(),
    )


def _coerce_id(value: int | str) -> int | None:
    """Positive int from an int or a numeric string, else None."""
    if isinstance(value, str):
        value = value.strip()
        if not (value.isascii() and value.isdigit()):
            return None
        value = int(value)
    return value if is_valid_id(value) else None


# =============================================================================
# Provider
# =============================================================================


class AzureDevOpsProvider:
    """Azure DevOps implementation of the work item provider.

    Example:
        >>> async with AzureDevOpsProvider(config) as provider:
        ...     records = await provider.fetch_work_items(
        ...         Query(filters=QueryFilters(state=("Active",)), limit=50)
        ...     )
    """

    def __init__(
        self,
        config: AzureDevOpsConfig,
        *,
        client: AzureDevOpsClient | None = None,
    ) -> None:
        self.config = config
        self._owns_client = client is None
        self._client = client or AzureDevOpsClient(config)

    @property
    def client(self) -> AzureDevOpsClient:
        """Underlying REST client for operations the provider does not wrap."""
        return self._client

    async def fetch_work_items(self, query: Query | None = None) -> list[WorkRecord]:
        """Run ``query`` and return normalized records.

        A query with no active filters returns [] without calling the
        query endpoint. ``limit`` truncates the WIQL result before the batch
        fetch, and records come back in WIQL result order.
        """
        if not has_filters(query):
            logger.debug("fetch_skipped_no_filters")
            return []

        wiql = build_wiql(query, self.config.default_assignees)
        refs = await self._client.query_work_items(wiql)

        ids = [ref.id for ref in refs]
        if query.limit is not None:
            ids = ids[: query.limit]
        if not ids:
            return []

        items = await self._client.batch_get_work_items(ids)

        # Batch results arrive in id order; restore the query's ordering
        position = {work_item_id: index for index, work_item_id in enumerate(ids)}
        items.sort(key=lambda item: position.get(item.id, len(position)))
        records = [normalize_work_item(item) for item in items]

        logger.info(
            "work_items_fetched",
            extra={
                "matched": len(refs),
                "requested": len(ids),
                "returned": len(records),
            },
        )
        return records

    async def get_work_item(self, work_item_id: int | str) -> WorkRecord | None:
        """Fetch one record; None for an invalid or nonexistent id."""
        numeric_id = _coerce_id(work_item_id)
        if numeric_id is None:
            return None
        try:
            item = await self._client.get_work_item(numeric_id, expand=WorkItemExpand.ALL)
        except NotFoundError:
            logger.debug("work_item_not_found", extra={"work_item_id": numeric_id})
            return None
        return normalize_work_item(item)

    async def get_comments(self, work_item_id: int | str) -> list[Comment]:
        """Comments of one work item; [] for an invalid id."""
        numeric_id = _coerce_id(work_item_id)
        if numeric_id is None:
            return []
        comments = await self._client.get_work_item_comments(numeric_id)
        return [normalize_comment(c, numeric_id) for c in comments]

    async def get_comments_batch(
        self, work_item_ids: Iterable[int | str]
    ) -> dict[int, list[Comment]]:
        """Comments for many work items (best effort per id). Invalid ids are skipped."""
        ids = [i for i in (_coerce_id(raw) for raw in work_item_ids) if i is not None]
        by_id = await self._client.batch_get_comments(ids)
        return {
            work_item_id: [normalize_comment(c, work_item_id) for c in comments]
            for work_item_id, comments in by_id.items()
        }

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=PROVIDER_NAME,
            version=__version__,
            supports={
                "batch_operations": True,
                "real_time_updates": False,
                "custom_fields": True,
            },
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.close()

    async def __aenter__(self) -> "AzureDevOpsProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
