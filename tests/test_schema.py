"""
Tests for the document schema: placements, entities, unknown-key carry-through.
"""
import pytest

from statusboard.schema import (
    AssigneePlacement,
    Column,
    ColumnPlacement,
    Document,
    Priority,
    Task,
    parse_placement,
    placement_from_dict,
    placement_storage_column,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Placement
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.parametrize("target,column", [
    ("todo", Column.TODO),
    ("upnext", Column.UPNEXT),
    ("done", Column.DONE),
    ("__todo__", Column.TODO),
    ("__upnext__", Column.UPNEXT),
    ("__done__", Column.DONE),
])
def test_known_columns_parse_as_columns(target, column):
    assert parse_placement(target) == ColumnPlacement(column)


def test_any_other_identifier_is_an_assignee():
    assert parse_placement("alice") == AssigneePlacement("alice")
    # in_progress is not a target column
    assert parse_placement("in_progress") == AssigneePlacement("in_progress")


def test_empty_identifier_is_rejected():
    with pytest.raises(ValueError):
        parse_placement("  ")
    with pytest.raises(ValueError):
        parse_placement(None)


def test_assignee_lane_is_stored_in_upnext():
    assert placement_storage_column(AssigneePlacement("bob")) == Column.UPNEXT
    assert placement_storage_column(ColumnPlacement(Column.DONE)) == Column.DONE


def test_placement_dict_round_trip():
    for placement in (AssigneePlacement("bob"), ColumnPlacement(Column.TODO)):
        assert placement_from_dict(placement.to_dict()) == placement
    assert placement_from_dict(None) is None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Entities
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_task_defaults_and_normalization():
    task = Task.from_dict({"id": "t1", "title": "A", "priority": "HIGH", "tags": ["x", "x", "y"]})
    assert task.priority == Priority.HIGH
    assert task.tags == ["x", "y"]
    assert task.subtasks is None

    unknown = Task.from_dict({"id": "t2", "title": "B", "priority": "urgent"})
    assert unknown.priority == Priority.MEDIUM


def test_task_keeps_unknown_keys():
    raw = {"id": "t1", "title": "A", "priority": "low", "tags": [], "estimate": "2h"}
    assert Task.from_dict(raw).to_dict()["estimate"] == "2h"


def test_priority_rank_orders_high_first():
    assert Priority.HIGH.rank < Priority.MEDIUM.rank < Priority.LOW.rank


def test_document_from_dict():
    doc = Document.from_dict({
        "projects": [{
            "id": "p1", "name": "One",
            "tasks": {"todo": [{"id": "t1", "title": "A"}], "in_progress": [{"id": "t2", "title": "B"}]},
        }],
        "todos": [{"id": "t3", "title": "C"}],
        "ideas": [{"id": "i1", "title": "Idea"}],
        "changeRequests": [{"id": "c1", "text": "Make it blue"}],
        "version": 7,
    })
    project = doc.project("p1")
    assert [t.id for t in project.column(Column.IN_PROGRESS)] == ["t2"]
    assert project.column(Column.DONE) == []
    assert doc.todos[0].id == "t3"
    assert doc.change_requests[0].status == "pending"
    assert doc.to_dict()["version"] == 7
    assert doc.project("missing") is None
