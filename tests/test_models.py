"""Unit tests for the domain models."""

import math
from dataclasses import FrozenInstanceError

import pytest

from workitems.models import (
    BatchOptions,
    Comment,
    ErrorPolicy,
    OrderDirection,
    Query,
    QueryFilters,
    ServerLimits,
    WorkItemExpand,
    WorkRecord,
)


def make_record(**overrides):
    values = {
        "id": 1,
        "revision": 2,
        "title": "Fix login",
        "state": "Active",
        "type": "Bug",
        "assignee": "Jamie Rivera",
        "created_at": "2026-03-01T09:00:00Z",
        "changed_at": "2026-03-02T09:00:00Z",
    }
    values.update(overrides)
    return WorkRecord(**values)


class TestWorkRecord:
    def test_tags_become_tuple(self):
        assert make_record(tags=["a", "b"]).tags == ("a", "b")

    def test_raw_fields_copied_and_read_only(self):
        raw = {"System.Title": "Fix login"}
        record = make_record(raw_fields=raw)
        raw["System.Title"] = "mutated"

        assert record.raw_fields["System.Title"] == "Fix login"
        with pytest.raises(TypeError):
            record.raw_fields["x"] = 1

    def test_frozen(self):
        with pytest.raises(FrozenInstanceError):
            make_record().state = "Closed"

    def test_comment_raw_fields_read_only(self):
        comment = Comment(
            id=1, work_item_id=2, text="hi", author="Sam", created_at="", raw_fields={"a": 1}
        )
        with pytest.raises(TypeError):
            comment.raw_fields["a"] = 2


class TestQuery:
    def test_filter_values_normalized(self):
        filters = QueryFilters(state=["Active"], type="Bug", area=None)
        assert filters.state == ("Active",)
        assert filters.type == ("Bug",)
        assert filters.area == ()

    def test_is_empty(self):
        assert QueryFilters().is_empty() is True
        assert QueryFilters(iteration=("Sprint 1",)).is_empty() is False

    def test_direction_from_string(self):
        assert Query(order_direction="desc").order_direction is OrderDirection.DESC

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            Query(limit=-1)

    def test_invalid_direction_rejected(self):
        with pytest.raises(ValueError):
            Query(order_direction="sideways")


class TestBatchOptions:
    def test_defaults(self):
        options = BatchOptions()
        assert options.error_policy is ErrorPolicy.FAIL
        assert options.to_params() == {}

    def test_to_params(self):
        options = BatchOptions(
            expand="relations", fields=["System.Id", "System.Title"], as_of="2026-01-01"
        )
        assert options.expand is WorkItemExpand.RELATIONS
        assert options.to_params() == {
            "$expand": "relations",
            "fields": "System.Id,System.Title",
            "asOf": "2026-01-01",
        }

    def test_policy_from_string(self):
        assert BatchOptions(error_policy="omit").error_policy is ErrorPolicy.OMIT


class TestServerLimits:
    def test_malformed_when_any_value_nan(self):
        assert ServerLimits(200.0, math.nan, 0.0).is_malformed is True
        assert ServerLimits(200.0, 10.0, 1767225600.0).is_malformed is False
