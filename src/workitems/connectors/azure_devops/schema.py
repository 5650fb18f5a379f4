"""Pydantic models for Azure DevOps REST payloads.

Only the fields the client and provider read are typed. Every model keeps
unknown keys (``extra="allow"``) so the full payload survives into
``WorkRecord.raw_fields``.

Sources:
- Work Items REST API 7.1: https://learn.microsoft.com/rest/api/azure/devops/wit/work-items
- Comments REST API 7.1-preview.3: https://learn.microsoft.com/rest/api/azure/devops/wit/comments
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "CommentsResponse",
    "WiqlResult",
    "WiqlWorkItemRef",
    "WireComment",
    "WireIdentity",
    "WireWorkItem",
    "WorkItemBatchResponse",
]


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_raw(self) -> dict[str, Any]:
        """Payload as the server sent it (wire key names, unset keys dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class WireIdentity(_WireModel):
    """IdentityRef as embedded in System.AssignedTo, createdBy, ..."""

    display_name: str | None = Field(default=None, alias="displayName")
    unique_name: str | None = Field(default=None, alias="uniqueName")
    id: str | None = None


class WireWorkItem(_WireModel):
    """A work item as returned by the single and batch endpoints.

    ``fields`` stays a plain dict keyed by reference name
    (``System.Title``, ``Microsoft.VSTS.Common.Priority``, ...).
    """

    id: int
    rev: int = 0
    url: str = ""
    fields: dict[str, Any] = Field(default_factory=dict)
    relations: list[dict[str, Any]] | None = None
    links: dict[str, Any] | None = Field(default=None, alias="_links")


class WorkItemBatchResponse(_WireModel):
    count: int = 0
    value: list[WireWorkItem] = Field(default_factory=list)


class WiqlWorkItemRef(_WireModel):
    id: int
    url: str = ""


class WiqlResult(_WireModel):
    """Response of POST /_apis/wit/wiql."""

    query_type: str | None = Field(default=None, alias="queryType")
    as_of: str | None = Field(default=None, alias="asOf")
    work_items: list[WiqlWorkItemRef] = Field(default_factory=list, alias="workItems")


class WireComment(_WireModel):
    id: int
    work_item_id: int = Field(alias="workItemId")
    text: str = ""
    version: int | None = None
    created_by: WireIdentity | str | None = Field(default=None, alias="createdBy")
    created_date: str | None = Field(default=None, alias="createdDate")
    modified_by: WireIdentity | str | None = Field(default=None, alias="modifiedBy")
    modified_date: str | None = Field(default=None, alias="modifiedDate")


class CommentsResponse(_WireModel):
    comments: list[WireComment] = Field(default_factory=list)
    count: int = 0
    total_count: int = Field(default=0, alias="totalCount")
