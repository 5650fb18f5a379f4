"""Translate a domain Query into WIQL.

WIQL reference: https://learn.microsoft.com/azure/devops/boards/queries/wiql-syntax

Equality filters (state, type, assigned_to) become a parenthesized OR of
``=`` predicates; area and iteration paths use ``UNDER`` so a path matches
itself and all its descendants. Active predicates are joined with AND.
"""

import re
from collections.abc import Iterable, Sequence

from ...models import OrderDirection, Query
from .errors import ValidationError

__all__ = ["SELECT_CLAUSE", "build_wiql", "escape_literal", "has_filters", "order_field"]

SELECT_CLAUSE = (
    "SELECT [System.Id], [System.Title], [System.State], "
    "[System.WorkItemType], [System.AssignedTo] FROM WorkItems"
)

ORDER_FIELDS = {
    "createdDate": "[System.CreatedDate]",
    "changedDate": "[System.ChangedDate]",
    "title": "[System.Title]",
    "state": "[System.State]",
    "id": "[System.Id]",
}

# Reference names: letters, digits, underscore and dots
FIELD_REFERENCE = re.compile(r"[A-Za-z0-9_.]+")


def escape_literal(value: str) -> str:
    """Quote a WIQL string literal; embedded single quotes are doubled."""
    return "'" + str(value).replace("'", "''") + "'"


def _any_of(field: str, operator: str, values: Sequence[str]) -> str | None:
    if not values:
        return None
    return "(" + " OR ".join(f"{field} {operator} {escape_literal(v)}" for v in values) + ")"


def order_field(name: str) -> str:
    """Map a friendly order-by alias to its field; other names are bracketed.

    Raises:
        ValidationError: If name is not a field reference name
    """
    if name in ORDER_FIELDS:
        return ORDER_FIELDS[name]
    if not isinstance(name, str) or not FIELD_REFERENCE.fullmatch(name):
        raise ValidationError(f"Invalid order_by field: {name!r}")
    return f"[{name}]"


def has_filters(query: Query | None) -> bool:
    return query is not None and query.filters is not None and not query.filters.is_empty()


def build_wiql(query: Query, default_assignees: Iterable[str] = ()) -> str:
    """Build the WIQL text for ``query``.

    Args:
        query: Domain query
        default_assignees: Assignee filter used when the query has none

    Returns:
        WIQL string. No WHERE clause when there are no active predicates,
        no ORDER BY clause when ``order_by`` is unset.
    """
    filters = query.filters
    conditions = []
    if filters is not None:
        assigned_to = filters.assigned_to or tuple(default_assignees)
        conditions = [
            _any_of("[System.State]", "=", filters.state),
            _any_of("[System.WorkItemType]", "=", filters.type),
            _any_of("[System.AssignedTo]", "=", assigned_to),
            _any_of("[System.AreaPath]", "UNDER", filters.area),
            _any_of("[System.IterationPath]", "UNDER", filters.iteration),
        ]
    conditions = [c for c in conditions if c]

    wiql = SELECT_CLAUSE
    if conditions:
        wiql += " WHERE " + " AND ".join(conditions)

    if query.order_by:
        direction = "DESC" if query.order_direction is OrderDirection.DESC else "ASC"
        wiql += f" ORDER BY {order_field(query.order_by)} {direction}"

    return wiql
