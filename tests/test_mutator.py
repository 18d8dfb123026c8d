"""
Tests for the server-side document mutator: locate, modify, conflict retry.
"""
from datetime import date
from unittest.mock import MagicMock

import pytest

from conftest import FixedClock, make_document, make_task
from statusboard.document_store import MemoryDocumentStore
from statusboard.errors import Conflict, InvalidRequest, NotFound
from statusboard.mutator import DocumentMutator, locate_task


class InterleavingStore(MemoryDocumentStore):
    """Lets another writer commit between our read and our write, `times` times."""

    def __init__(self, content, times=1):
        super().__init__(content)
        self.times = times

    def write(self, content, revision, message):
        if self.times:
            self.times -= 1
            theirs, their_rev = self.read()
            theirs["projects"][0]["tasks"]["todo"].append(make_task("other", "Written elsewhere"))
            super().write(theirs, their_rev, "Concurrent edit")
        return super().write(content, revision, message)


def column_ids(store, column, project_index=0):
    content, _ = store.read()
    return [t["id"] for t in content["projects"][project_index]["tasks"][column]]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Locate
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestLocate:

    def test_finds_task_in_any_column_and_todos(self):
        content = make_document(in_progress=[make_task("a")], todos=[make_task("b")])
        assert locate_task(content, "a").column == "in_progress"
        loc = locate_task(content, "b")
        assert loc.project is None and loc.index == 0

    def test_scans_all_projects_even_when_project_given(self):
        content = make_document(todo=[make_task("a")])
        content["projects"].append({"id": "p2", "name": "Two", "tasks": {"done": [make_task("z")]}})
        assert locate_task(content, "z", "p2").column == "done"

    def test_missing_task_or_project(self):
        content = make_document(todo=[make_task("a")])
        with pytest.raises(NotFound):
            locate_task(content, "nope")
        with pytest.raises(NotFound):
            locate_task(content, "a", "no-such-project")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Tasks
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTasks:

    def setup_method(self):
        self.clock = FixedClock()

    def mutator(self, store, **kwargs):
        return DocumentMutator(store, clock=self.clock, **kwargs)

    def test_add_task_to_project_column(self, memory_store):
        task = self.mutator(memory_store).add_task({"title": "  New thing "}, "p1", "upnext")
        assert task["title"] == "New thing"
        assert "user-added" in task["tags"]
        assert task["id"].startswith("u-")
        assert column_ids(memory_store, "upnext") == ["t2", task["id"]]
        assert memory_store.commits == ["Add task: New thing"]

    def test_add_task_to_assignee_lane(self, memory_store):
        task = self.mutator(memory_store).add_task({"title": "Review"}, "p1", "alice")
        assert task["assignee"] == "alice"
        assert task["id"] in column_ids(memory_store, "upnext")

    def test_add_task_without_project_goes_to_todos(self, memory_store):
        task = self.mutator(memory_store).add_task({"title": "Loose"})
        content, _ = memory_store.read()
        assert [t["id"] for t in content["todos"]] == [task["id"]]

    def test_add_task_with_existing_id_does_not_duplicate(self, memory_store):
        m = self.mutator(memory_store)
        first = m.add_task({"id": "u-1", "title": "Once"}, "p1")
        again = m.add_task({"id": "u-1", "title": "Once"}, "p1")
        assert again == first
        assert column_ids(memory_store, "todo").count("u-1") == 1
        assert len(memory_store.commits) == 1

    def test_add_task_requires_title(self, memory_store):
        with pytest.raises(InvalidRequest):
            self.mutator(memory_store).add_task({"title": "  "})

    def test_move_between_columns(self, memory_store):
        result = self.mutator(memory_store).move_task("t1", "p1", "done")
        assert result == {"taskId": "t1", "from": "todo", "to": "done"}
        content, _ = memory_store.read()
        moved = content["projects"][0]["tasks"]["done"][-1]
        assert moved["id"] == "t1" and moved["completedAt"]
        assert memory_store.commits == ['Move task "Write docs" to done']

    def test_move_out_of_done_clears_completion(self, memory_store):
        self.mutator(memory_store).move_task("t3", "p1", "__todo__")
        content, _ = memory_store.read()
        assert "completedAt" not in content["projects"][0]["tasks"]["todo"][-1]

    def test_move_to_assignee_sets_assignee(self, memory_store):
        result = self.mutator(memory_store).move_task("t1", "p1", "alice")
        assert result["to"] == "upnext"
        content, _ = memory_store.read()
        assert content["projects"][0]["tasks"]["upnext"][-1] == dict(
            make_task("t1", "Write docs"), assignee="alice")
        assert memory_store.commits == ['Move task "Write docs" to alice']

    def test_noop_move_skips_write(self, memory_store):
        before = memory_store.revision
        self.mutator(memory_store).move_task("t2", "p1", "upnext")
        assert memory_store.revision == before

    def test_move_unknown_task(self, memory_store):
        with pytest.raises(NotFound):
            self.mutator(memory_store).move_task("nope", "p1", "done")

    def test_completion_is_idempotent(self, memory_store):
        m = self.mutator(memory_store)
        m.set_completion("t1", "p1", True)
        revision = memory_store.revision
        m.set_completion("t1", "p1", True)
        assert memory_store.revision == revision
        assert column_ids(memory_store, "done").count("t1") == 1
        assert column_ids(memory_store, "todo") == []

    def test_reopen_moves_to_todo(self, memory_store):
        self.mutator(memory_store).set_completion("t3", "p1", False)
        assert column_ids(memory_store, "todo") == ["t1", "t3"]
        assert memory_store.commits == ["Reopen task: Set up CI"]

    def test_completion_of_top_level_todo(self):
        store = MemoryDocumentStore(make_document(todos=[make_task("x")]))
        self.mutator(store).set_completion("x", None, True)
        content, _ = store.read()
        assert content["todos"][0]["completedAt"] == "2026-03-01T10:00:01.000Z"

    def test_every_write_stamps_last_updated(self, memory_store):
        self.mutator(memory_store).set_completion("t1", "p1", True)
        content, _ = memory_store.read()
        # first clock call stamps completedAt, the second lastUpdated
        assert content["lastUpdated"] == "2026-03-01T10:00:02.000Z"

    def test_edit_merges_and_removes_fields(self, memory_store):
        m = self.mutator(memory_store)
        m.edit_task("t1", "p1", {"title": "Docs v2", "dueDate": "2026-04-01"})
        task = m.edit_task("t1", "p1", {"dueDate": None, "priority": "HIGH"})
        assert task["title"] == "Docs v2"
        assert task["priority"] == "high"
        assert "dueDate" not in task

    def test_edit_rejects_unknown_fields(self, memory_store):
        with pytest.raises(InvalidRequest):
            self.mutator(memory_store).edit_task("t1", "p1", {"id": "hijack"})

    def test_edit_with_same_values_skips_write(self, memory_store):
        before = memory_store.revision
        self.mutator(memory_store).edit_task("t1", "p1", {"title": "Write docs"})
        assert memory_store.revision == before

    def test_subtasks(self, memory_store):
        m = self.mutator(memory_store)
        m.mutate_subtask("t1", "p1", "add", subtask={"id": "s1", "title": "Outline"})
        m.mutate_subtask("t1", "p1", "add", subtask={"id": "s1", "title": "Outline"})
        m.mutate_subtask("t1", "p1", "toggle", subtask_id="s1")
        content, _ = memory_store.read()
        assert content["projects"][0]["tasks"]["todo"][0]["subtasks"] == [
            {"id": "s1", "title": "Outline", "done": True},
        ]
        m.mutate_subtask("t1", "p1", "toggle", subtask_id="s1", subtask={"done": True})
        assert len(memory_store.commits) == 2
        m.mutate_subtask("t1", "p1", "delete", subtask_id="s1")
        content, _ = memory_store.read()
        assert content["projects"][0]["tasks"]["todo"][0]["subtasks"] == []

    def test_missing_subtask(self, memory_store):
        with pytest.raises(NotFound):
            self.mutator(memory_store).mutate_subtask("t1", "p1", "toggle", subtask_id="nope")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Concurrency
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestConflicts:

    def test_single_shot_surfaces_conflict_and_keeps_other_write(self):
        store = InterleavingStore(make_document(todo=[make_task("t1")]))
        with pytest.raises(Conflict):
            DocumentMutator(store, max_attempts=1).move_task("t1", "p1", "done")
        assert column_ids(store, "todo") == ["t1", "other"]
        assert column_ids(store, "done") == []

    def test_retry_reapplies_on_fresh_document(self):
        store = InterleavingStore(make_document(todo=[make_task("t1")]))
        DocumentMutator(store, max_attempts=3).move_task("t1", "p1", "done")
        assert column_ids(store, "todo") == ["other"]
        assert column_ids(store, "done") == ["t1"]
        assert store.commits == ["Concurrent edit", 'Move task "Task t1" to done']

    def test_gives_up_after_max_attempts(self):
        store = InterleavingStore(make_document(todo=[make_task("t1")]), times=5)
        with pytest.raises(Conflict):
            DocumentMutator(store, max_attempts=3).set_completion("t1", "p1", True)
        assert store.commits == ["Concurrent edit"] * 3


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Ideas, change requests, today plan
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestIdeasAndRequests:

    def setup_method(self):
        self.notifier = MagicMock()
        self.store = MemoryDocumentStore(make_document())
        self.m = DocumentMutator(self.store, clock=FixedClock(), notifier=self.notifier)

    def test_add_idea_notifies_once(self):
        idea = self.m.add_idea("Dark mode", "  for night owls ", ["ui", "ui"], idea_id="idea-1")
        self.m.add_idea("Dark mode", idea_id="idea-1")
        assert idea["idea"] == "for night owls"
        assert idea["tags"] == ["ui"]
        self.notifier.notify.assert_called_once()
        assert "Dark mode" in self.notifier.notify.call_args[0][0]

    def test_edit_and_delete_idea(self):
        self.m.add_idea("Dark mode", idea_id="idea-1")
        edited = self.m.edit_idea("idea-1", title="Darker mode", idea="pitch black")
        assert edited["title"] == "Darker mode" and edited["idea"] == "pitch black"
        self.m.delete_idea("idea-1")
        self.m.delete_idea("idea-1")
        content, _ = self.store.read()
        assert content["ideas"] == []
        with pytest.raises(NotFound):
            self.m.edit_idea("idea-1", title="Gone")

    def test_change_request_lifecycle(self):
        req_id = self.m.submit_change_request("Bigger font please")
        assert req_id.startswith("cr-")
        self.m.cancel_change_request(req_id)
        self.m.cancel_change_request(req_id)
        self.m.cancel_change_request("unknown")
        content, _ = self.store.read()
        assert content["changeRequests"][0]["status"] == "cancelled"
        assert len(self.store.commits) == 2
        self.notifier.notify.assert_called_once()

    def test_populate_today_once_per_day(self):
        store = MemoryDocumentStore(make_document(
            todo=[make_task("a")], upnext=[make_task("b"), make_task("c")],
        ))
        m = DocumentMutator(store, clock=FixedClock())
        plan = m.populate_today(date(2026, 3, 1), {"p1": 20})
        assert [t["taskId"] for t in plan["tasks"]] == ["b", "c"]
        assert m.populate_today(date(2026, 3, 1), {"p1": 20}) is None
        assert m.populate_today(date(2026, 3, 1), {"p1": 10}, force=True)["tasks"][0]["taskId"] == "b"
        assert len(store.commits) == 2
