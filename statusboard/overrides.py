"""
Local override store (SQLite).

Holds the user's local intent between sessions: where they moved a task,
whether they ticked it off, field edits, manual ordering, tasks/ideas/change
requests created before the server confirmed them, and reminders.

Overrides are advisory. They never touch the canonical document; the
reconciler lays them over each snapshot. They are not cleared when a remote
mutation succeeds. prune() drops whatever a fresh snapshot already says.

Writers in different processes sharing one database file are
last-write-wins per key; there is no cross-process coordination.
"""
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .schema import (
    AssigneePlacement,
    Column,
    Document,
    Placement,
    Task,
    placement_from_dict,
)
from .util import utc_now

logger = logging.getLogger(__name__)

SCOPES = ("tasks", "order", "local_tasks", "ideas", "change_requests", "reminders")


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Override records
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class TaskOverride:
    """Everything the user changed locally about one task."""
    completed: Optional[bool] = None
    placement: Optional[Placement] = None
    patch: Dict[str, Any] = field(default_factory=dict)
    subtask_toggles: Dict[str, bool] = field(default_factory=dict)
    subtasks_added: List[Dict[str, Any]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return (self.completed is None and self.placement is None and not self.patch
                and not self.subtask_toggles and not self.subtasks_added)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.completed is not None:
            out["completed"] = self.completed
        if self.placement is not None:
            out["placement"] = self.placement.to_dict()
        if self.patch:
            out["patch"] = self.patch
        if self.subtask_toggles or self.subtasks_added:
            out["subtaskPatch"] = {"toggled": self.subtask_toggles, "added": self.subtasks_added}
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TaskOverride":
        data = data or {}
        sub = data.get("subtaskPatch") or {}
        completed = data.get("completed")
        return cls(
            completed=None if completed is None else bool(completed),
            placement=placement_from_dict(data.get("placement")),
            patch=dict(data.get("patch") or {}),
            subtask_toggles={str(k): bool(v) for k, v in (sub.get("toggled") or {}).items()},
            subtasks_added=list(sub.get("added") or []),
        )


def canonical_view_column(column: Column) -> Column:
    """Snapshot membership → rendered column: done > upnext > everything else is todo."""
    if column in (Column.DONE, Column.UPNEXT):
        return column
    return Column.TODO


def effective_column(
    override: Optional[TaskOverride],
    canonical: Column,
    assignee: Optional[str] = None,
) -> Tuple[Column, Optional[str]]:
    """
    Resolve where a task renders, and under which assignee.

    1. an explicit placement wins (an assignee lane renders in upnext);
    2. else completed=True forces done, completed=False reopens a done task;
    3. else the snapshot's column.
    """
    if override is not None and override.placement is not None:
        if isinstance(override.placement, AssigneePlacement):
            return Column.UPNEXT, override.placement.name
        return canonical_view_column(override.placement.column), assignee
    base = canonical_view_column(canonical)
    if override is not None and override.completed is True:
        return Column.DONE, assignee
    if override is not None and override.completed is False and base == Column.DONE:
        return Column.TODO, assignee
    return base, assignee


@dataclass
class LocalTask:
    """A task created on this client, not yet seen in a snapshot."""
    task: Dict[str, Any]
    project_id: Optional[str] = None
    placement: Optional[Placement] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task,
            "projectId": self.project_id,
            "placement": self.placement.to_dict() if self.placement else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalTask":
        return cls(
            task=dict(data.get("task") or {}),
            project_id=data.get("projectId"),
            placement=placement_from_dict(data.get("placement")),
        )


@dataclass
class Overrides:
    """Immutable-by-convention input to the reconciler."""
    tasks: Dict[str, TaskOverride] = field(default_factory=dict)
    order: Dict[Tuple[str, str], List[str]] = field(default_factory=dict)
    local_tasks: Dict[str, LocalTask] = field(default_factory=dict)
    ideas: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    change_requests: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    reminders: Dict[str, str] = field(default_factory=dict)


def order_key(project_id: str, column: str) -> str:
    return f"{project_id}::{column}"


def split_order_key(key: str) -> Tuple[str, str]:
    project_id, _, column = key.rpartition("::")
    return project_id, column


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Store
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ScopedMap:
    """One override kind, addressed by key."""

    def __init__(self, store: "OverrideStore", scope: str):
        self.store = store
        self.scope = scope

    def get(self, key: str, default: Any = None) -> Any:
        return self.store._get(self.scope, key, default)

    def set(self, key: str, value: Any) -> None:
        self.store._set(self.scope, key, value)

    def delete(self, key: str) -> None:
        self.store._delete(self.scope, key)

    def items(self) -> Dict[str, Any]:
        return self.store._items(self.scope)


class OverrideStore:
    """SQLite-backed persisted override maps."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "statusboard" / "overrides.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._subscribers: List[Callable[[str, str], None]] = []
        self._sub_lock = threading.Lock()
        # Held across read-modify-write of one entry within this process
        self.lock = threading.RLock()
        self._init_schema()

    def _init_schema(self):
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS overrides (
                    scope TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,   -- JSON
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (scope, key)
                )
            """)
            conn.commit()

    # ── Raw key/value ────────────────────────────────────────────────────────

    def scope(self, name: str) -> ScopedMap:
        if name not in SCOPES:
            raise ValueError(f"Unknown override scope: {name}")
        return ScopedMap(self, name)

    def _get_raw(self, scope: str, key: str) -> Optional[str]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM overrides WHERE scope = ? AND key = ?", (scope, key)
            ).fetchone()
        return row["value"] if row else None

    def _get(self, scope: str, key: str, default: Any = None) -> Any:
        raw = self._get_raw(scope, key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Dropping unreadable override {scope}/{key}")
            return default

    def _set(self, scope: str, key: str, value: Any) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO overrides (scope, key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(scope, key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """, (scope, key, json.dumps(value, ensure_ascii=False), utc_now()))
            conn.commit()
        self._emit(scope, key)

    def _delete(self, scope: str, key: str) -> None:
        with _connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM overrides WHERE scope = ? AND key = ?", (scope, key))
            conn.commit()
            deleted = cur.rowcount
        if deleted:
            self._emit(scope, key)

    def _items_raw(self, scope: str) -> Dict[str, str]:
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT key, value FROM overrides WHERE scope = ? ORDER BY rowid", (scope,)
            ).fetchall()
        return {row["key"]: row["value"] for row in rows}

    def _items(self, scope: str) -> Dict[str, Any]:
        out = {}
        for key, raw in self._items_raw(scope).items():
            try:
                out[key] = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Dropping unreadable override {scope}/{key}")
        return out

    def _replace(self, scope: str, key: str, expected: str, value: Any) -> bool:
        """
        Write `value` (None deletes) only if the stored JSON is still `expected`.

        Returns False when another writer got there first; their value stays.
        """
        with _connect(self.db_path) as conn:
            if value is None:
                cur = conn.execute(
                    "DELETE FROM overrides WHERE scope = ? AND key = ? AND value = ?", (scope, key, expected))
            else:
                cur = conn.execute(
                    "UPDATE overrides SET value = ?, updated_at = ? WHERE scope = ? AND key = ? AND value = ?",
                    (json.dumps(value, ensure_ascii=False), utc_now(), scope, key, expected))
            conn.commit()
            replaced = cur.rowcount > 0
        if replaced:
            self._emit(scope, key)
        return replaced

    # ── Change notification ──────────────────────────────────────────────────

    def subscribe(self, callback: Callable[[str, str], None]) -> None:
        """Call `callback(scope, key)` after every write or delete through this store."""
        with self._sub_lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[str, str], None]) -> None:
        with self._sub_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _emit(self, scope: str, key: str) -> None:
        with self._sub_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(scope, key)
            except Exception as e:
                logger.error(f"Override subscriber failed on {scope}/{key}: {e}")

    # ── Typed helpers ────────────────────────────────────────────────────────

    def task_override(self, task_id: str) -> TaskOverride:
        return TaskOverride.from_dict(self.scope("tasks").get(task_id))

    def put_task_override(self, task_id: str, override: TaskOverride) -> None:
        if override.is_empty():
            self.scope("tasks").delete(task_id)
        else:
            self.scope("tasks").set(task_id, override.to_dict())

    def update_task_override(self, task_id: str, **fields) -> TaskOverride:
        """Read-modify-write one task override; unknown field names raise AttributeError."""
        with self.lock:
            override = self.task_override(task_id)
            for name, value in fields.items():
                if not hasattr(override, name):
                    raise AttributeError(f"TaskOverride has no field {name!r}")
                setattr(override, name, value)
            self.put_task_override(task_id, override)
        return override

    def set_order(self, project_id: str, column: str, task_ids: List[str]) -> None:
        key = order_key(project_id, column)
        if task_ids:
            self.scope("order").set(key, list(task_ids))
        else:
            self.scope("order").delete(key)

    def add_local_task(self, local: LocalTask) -> None:
        self.scope("local_tasks").set(local.task["id"], local.to_dict())

    def snapshot(self) -> Overrides:
        """Read every scope into one Overrides value for the reconciler."""
        return Overrides(
            tasks={k: TaskOverride.from_dict(v) for k, v in self.scope("tasks").items().items()},
            order={split_order_key(k): list(v) for k, v in self.scope("order").items().items()},
            local_tasks={k: LocalTask.from_dict(v) for k, v in self.scope("local_tasks").items().items()},
            ideas=self.scope("ideas").items(),
            change_requests=self.scope("change_requests").items(),
            reminders=self.scope("reminders").items(),
        )

    # ── Superseding ──────────────────────────────────────────────────────────

    def prune(self, document: Document) -> int:
        """
        Drop overrides that `document` already encodes. Returns entries removed or trimmed.

        Only state the snapshot agrees with is dropped, so the projected view
        is identical before and after. Each entry is rewritten only if it is
        unchanged since it was read; a newer local action always survives.
        """
        changed = 0
        canonical = _index_tasks(document)

        for task_id, raw in self._items_raw("tasks").items():
            if task_id not in canonical:
                continue
            task, column = canonical[task_id]
            with self.lock:
                override = TaskOverride.from_dict(_loads(raw))
                trimmed = _trim_task_override(override, task, column)
                if trimmed.to_dict() != override.to_dict():
                    value = None if trimmed.is_empty() else trimmed.to_dict()
                    changed += self._replace("tasks", task_id, raw, value)

        for task_id, raw in self._items_raw("local_tasks").items():
            if task_id in canonical:
                changed += self._replace("local_tasks", task_id, raw, None)

        ideas = {i.id: i.to_dict() for i in document.ideas}
        for idea_id, raw in self._items_raw("ideas").items():
            entry = _loads(raw)
            op = entry.get("op")
            if op == "delete" and idea_id not in ideas:
                superseded = True
            elif op in ("add", "edit") and idea_id in ideas:
                stored = ideas[idea_id]
                superseded = all(stored.get(k) == v for k, v in (entry.get("idea") or {}).items())
            else:
                superseded = False
            if superseded:
                changed += self._replace("ideas", idea_id, raw, None)

        requests_ = {c.id: c for c in document.change_requests}
        for req_id, raw in self._items_raw("change_requests").items():
            stored = requests_.get(req_id)
            if stored is None:
                continue
            entry = _loads(raw)
            if stored.status == entry.get("status"):
                changed += self._replace("change_requests", req_id, raw, None)
            elif entry.get("local"):
                # Submitted and seen; only the cancellation is still outstanding
                entry.pop("local")
                changed += self._replace("change_requests", req_id, raw, entry)

        if changed:
            logger.debug(f"Pruned {changed} superseded overrides")
        return changed


def _loads(raw: str) -> Dict[str, Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def _index_tasks(document: Document) -> Dict[str, Tuple[Task, Column]]:
    index = {}
    for project in document.projects:
        for col, tasks in project.tasks.items():
            for task in tasks:
                index[task.id] = (task, col)
    for task in document.todos:
        col = Column.DONE if task.completed_at else Column.TODO
        index[task.id] = (task, col)
    return index


def _trim_task_override(override: TaskOverride, task: Task, column: Column) -> TaskOverride:
    trimmed = TaskOverride.from_dict(override.to_dict())

    # Placement and completion are judged together: both go once the snapshot renders the same
    if trimmed.placement is not None or trimmed.completed is not None:
        local = effective_column(trimmed, column, task.assignee)
        remote = effective_column(None, column, task.assignee)
        if local == remote:
            trimmed.placement = None
            trimmed.completed = None

    current = task.to_dict()
    trimmed.patch = {k: v for k, v in trimmed.patch.items() if current.get(k) != v}

    subtasks = {s.id: s for s in task.subtasks or []}
    trimmed.subtask_toggles = {
        sid: done for sid, done in trimmed.subtask_toggles.items()
        if sid not in subtasks or subtasks[sid].done != done
    }
    trimmed.subtasks_added = [s for s in trimmed.subtasks_added if s.get("id") not in subtasks]
    return trimmed
