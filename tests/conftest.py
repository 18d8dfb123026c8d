"""Shared test fixtures for the status board tests."""

import sys
from concurrent.futures import Future
from pathlib import Path

import pytest

# Ensure the repo root (statusboard/, board_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from statusboard.document_store import MemoryDocumentStore  # noqa: E402
from statusboard.overrides import OverrideStore  # noqa: E402


def make_task(task_id, title=None, **fields):
    task = {"id": task_id, "title": title or f"Task {task_id}", "priority": "medium", "tags": []}
    task.update(fields)
    return task


def make_document(todo=(), upnext=(), in_progress=(), done=(), project_id="p1", **extra):
    doc = {
        "projects": [{
            "id": project_id,
            "name": "Project One",
            "status": "active",
            "tasks": {
                "todo": list(todo),
                "upnext": list(upnext),
                "in_progress": list(in_progress),
                "done": list(done),
            },
        }],
        "todos": [],
        "ideas": [],
        "changeRequests": [],
        "lastUpdated": "2026-01-01T00:00:00.000Z",
    }
    doc.update(extra)
    return doc


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True):
        pass


class FixedClock:
    """Deterministic clock: a fresh, increasing timestamp per call."""

    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return f"2026-03-01T10:00:{self.calls:02d}.000Z"


@pytest.fixture
def override_store(tmp_path):
    return OverrideStore(str(tmp_path / "overrides.db"))


@pytest.fixture
def memory_store():
    return MemoryDocumentStore(make_document(
        todo=[make_task("t1", "Write docs")],
        upnext=[make_task("t2", "Ship release", priority="high")],
        done=[make_task("t3", "Set up CI", completedAt="2026-01-01T00:00:00.000Z")],
    ))
