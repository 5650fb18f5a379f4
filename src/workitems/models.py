"""Domain models for normalized Azure DevOps work items.

Records are produced only by the provider's normalization step and are
immutable afterwards. The full wire payload stays available on
``raw_fields`` as a read-only mapping for consumers that need fields the
typed projection drops.

Note: Uses (str, Enum) pattern for Python 3.10 compatibility.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

__all__ = [
    "BatchOptions",
    "BatchStats",
    "Comment",
    "ConnectionInfo",
    "ErrorPolicy",
    "OrderDirection",
    "ProviderInfo",
    "Query",
    "QueryFilters",
    "RateLimitStatus",
    "ServerLimits",
    "WorkItemExpand",
    "WorkItemReference",
    "WorkRecord",
    "UNASSIGNED",
]

# Assignee sentinel when neither display name nor unique name is present
UNASSIGNED = "Unassigned"


class OrderDirection(str, Enum):
    """Sort direction for ORDER BY."""

    ASC = "asc"
    DESC = "desc"


class ErrorPolicy(str, Enum):
    """What a failed batch chunk does to the overall call."""

    FAIL = "fail"  # Abort the whole operation
    OMIT = "omit"  # Contribute an empty partial result and continue


class WorkItemExpand(str, Enum):
    """Values accepted by the $expand query parameter."""

    ALL = "all"
    FIELDS = "fields"
    LINKS = "links"
    RELATIONS = "relations"
    NONE = "none"


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class WorkRecord:
    """Normalized work item.

    Attributes:
        id: Work item id (> 0)
        revision: Server revision number
        title: System.Title
        state: System.State
        type: System.WorkItemType
        assignee: Display name, unique name, or UNASSIGNED
        created_at: System.CreatedDate (ISO 8601 string as sent by the server)
        changed_at: System.ChangedDate
        description: System.Description (HTML), if any
        tags: Parsed System.Tags
        raw_fields: Full wire payload (fields plus _links, relations, url, rev)
    """

    id: int
    revision: int
    title: str
    state: str
    type: str
    assignee: str
    created_at: str
    changed_at: str
    description: str | None = None
    tags: tuple[str, ...] = ()
    raw_fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "raw_fields", _freeze(self.raw_fields))


@dataclass(frozen=True)
class Comment:
    """Normalized work item comment."""

    id: int
    work_item_id: int
    text: str
    author: str
    created_at: str
    modified_at: str | None = None
    raw_fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "raw_fields", _freeze(self.raw_fields))


@dataclass(frozen=True)
class QueryFilters:
    """Filters on a work item query. Empty tuples mean "no filter"."""

    state: tuple[str, ...] = ()
    type: tuple[str, ...] = ()
    assigned_to: tuple[str, ...] = ()
    area: tuple[str, ...] = ()
    iteration: tuple[str, ...] = ()

    def __post_init__(self):
        for name in ("state", "type", "assigned_to", "area", "iteration"):
            value = getattr(self, name)
            if value is None:
                value = ()
            elif isinstance(value, str):
                value = (value,)
            object.__setattr__(self, name, tuple(value))

    def is_empty(self) -> bool:
        return not (
            self.state or self.type or self.assigned_to or self.area or self.iteration
        )


@dataclass(frozen=True)
class Query:
    """Domain-level work item query.

    Only the provider translates this into WIQL.
    """

    filters: QueryFilters | None = None
    order_by: str | None = None
    order_direction: OrderDirection = OrderDirection.ASC
    limit: int | None = None

    def __post_init__(self):
        object.__setattr__(
            self, "order_direction", OrderDirection(self.order_direction)
        )
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")


@dataclass(frozen=True)
class BatchOptions:
    """Per-call options for batch work item fetches."""

    expand: WorkItemExpand | None = None
    fields: tuple[str, ...] | None = None
    as_of: str | None = None
    error_policy: ErrorPolicy = ErrorPolicy.FAIL

    def __post_init__(self):
        if self.expand is not None:
            object.__setattr__(self, "expand", WorkItemExpand(self.expand))
        if self.fields is not None:
            object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "error_policy", ErrorPolicy(self.error_policy))

    def to_params(self) -> dict[str, str]:
        """Query parameters for the batch endpoint (ids excluded)."""
        params: dict[str, str] = {}
        if self.expand is not None:
            params["$expand"] = self.expand.value
        if self.fields:
            params["fields"] = ",".join(self.fields)
        if self.as_of:
            params["asOf"] = self.as_of
        return params


@dataclass(frozen=True)
class WorkItemReference:
    """Lightweight reference returned by the WIQL endpoint."""

    id: int
    url: str


@dataclass(frozen=True)
class ServerLimits:
    """Quota values last reported by the server.

    Numeric fields are NaN when the server sent something unparseable.
    """

    limit: float
    remaining: float
    reset_epoch_seconds: float
    resource: str | None = None

    @property
    def is_malformed(self) -> bool:
        return any(
            math.isnan(v) for v in (self.limit, self.remaining, self.reset_epoch_seconds)
        )


@dataclass(frozen=True)
class RateLimitStatus:
    """Diagnostic snapshot of the rate limiter."""

    max_concurrent: int
    requests_per_second: float
    current_server_limits: ServerLimits | None
    is_throttling: bool
    estimated_wait_ms: float
    in_flight: int = 0


@dataclass(frozen=True)
class BatchStats:
    """Planned request shape for a batch of ids."""

    total_items: int
    total_batches: int
    batch_size: int
    max_concurrency: int
    concurrent_rounds: int
    estimated_request_count: int


@dataclass(frozen=True)
class ConnectionInfo:
    organization: str
    project: str
    base_url: str


@dataclass(frozen=True)
class ProviderInfo:
    name: str
    version: str
    supports: Mapping[str, bool] = field(default_factory=dict)
