"""
Remote document mutator.

Every operation runs the same optimistic cycle against a document store:

    READ    current document + revision
    LOCATE  target entity (task ids are unique across the whole document,
            so every project column and the top-level todos are scanned)
    MODIFY  a deep copy
    WRITE   back with the revision from READ; the store rejects stale writes

A rejected write (Conflict) re-runs the whole cycle on fresh data, up to
`max_attempts` times, before Conflict reaches the caller. Operations whose
target state already holds skip the write entirely.
"""
import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .errors import Conflict, InvalidRequest, NotFound
from .notify import HookNotifier, change_request_message, idea_message
from .schema import (
    AssigneePlacement,
    Column,
    EDITABLE_TASK_FIELDS,
    Priority,
    STORAGE_COLUMNS,
    TASK_FIELDS,
    Task,
    parse_placement,
    placement_storage_column,
)
from .today import already_planned, plan_today
from .util import make_id, utc_now

logger = logging.getLogger(__name__)

PRIORITY_VALUES = {p.value for p in Priority}


@dataclass
class Location:
    """Where a task sits in a raw document. `project` is None for top-level todos."""
    project: Optional[Dict[str, Any]]
    column: Optional[str]
    index: int
    task: Dict[str, Any]

    @property
    def container(self) -> List[Dict[str, Any]]:
        return self.project["tasks"][self.column]


@dataclass
class _Change:
    result: Any
    message: Optional[str]  # None: nothing to commit


# ── Document helpers ─────────────────────────────────────────────────────────

def ensure_columns(project: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    tasks = project.get("tasks")
    if not isinstance(tasks, dict):
        tasks = project["tasks"] = {}
    for col in STORAGE_COLUMNS:
        if not isinstance(tasks.get(col.value), list):
            tasks[col.value] = []
    return tasks


def find_project(content: Dict[str, Any], project_id: str) -> Dict[str, Any]:
    for project in content.get("projects") or []:
        if project.get("id") == project_id:
            return project
    raise NotFound(f"Project not found: {project_id}")


def locate_task(content: Dict[str, Any], task_id: str, project_id: Optional[str] = None) -> Location:
    """Find a task anywhere in the document. A given project is only checked for existence."""
    if project_id:
        find_project(content, project_id)
    for project in content.get("projects") or []:
        tasks = ensure_columns(project)
        for col in STORAGE_COLUMNS:
            for idx, task in enumerate(tasks[col.value]):
                if task.get("id") == task_id:
                    return Location(project, col.value, idx, task)
    for idx, task in enumerate(content.get("todos") or []):
        if task.get("id") == task_id:
            return Location(None, None, idx, task)
    raise NotFound(f"Task not found: {task_id}")


def remove_task(project: Dict[str, Any], task_id: str) -> None:
    tasks = ensure_columns(project)
    for col in STORAGE_COLUMNS:
        tasks[col.value] = [t for t in tasks[col.value] if t.get("id") != task_id]


def _find_by_id(items: List[Dict[str, Any]], item_id: str) -> Optional[Dict[str, Any]]:
    for item in items:
        if item.get("id") == item_id:
            return item
    return None


def _require_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f"Missing {name}")
    return value.strip()


def _clean_tags(tags: Any) -> List[str]:
    if tags is None:
        return []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise InvalidRequest("tags must be a list of strings")
    return list(dict.fromkeys(tags))


def _clean_priority(value: Any) -> str:
    if value is None:
        return Priority.MEDIUM.value
    if not isinstance(value, str) or value.lower() not in PRIORITY_VALUES:
        raise InvalidRequest(f"Invalid priority: {value}", f"Allowed: {', '.join(sorted(PRIORITY_VALUES))}")
    return value.lower()


def _clean_subtasks(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        raise InvalidRequest("subtasks must be a list")
    out = []
    for raw in value:
        if not isinstance(raw, dict):
            raise InvalidRequest("each subtask must be an object")
        out.append({
            "id": str(raw.get("id") or make_id("st")),
            "title": _require_text(raw.get("title"), "subtask.title"),
            "done": bool(raw.get("done", False)),
        })
    return out


def _placement(target: Any):
    try:
        return parse_placement(target)
    except ValueError as e:
        raise InvalidRequest(f"Invalid column: {target!r}", str(e))


class DocumentMutator:
    """Applies board mutations to the shared document under optimistic concurrency."""

    def __init__(
        self,
        store,
        max_attempts: int = 3,
        clock: Callable[[], str] = utc_now,
        notifier: Optional[HookNotifier] = None,
    ):
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.clock = clock
        self.notifier = notifier

    # ── Commit cycle ─────────────────────────────────────────────────────────

    def _commit(self, apply: Callable[[Dict[str, Any]], _Change]) -> Any:
        for attempt in range(1, self.max_attempts + 1):
            content, revision = self.store.read()
            working = copy.deepcopy(content)
            change = apply(working)
            if change.message is None:
                return change.result
            working["lastUpdated"] = self.clock()
            try:
                self.store.write(working, revision, change.message)
            except Conflict:
                if attempt == self.max_attempts:
                    logger.warning(f"Giving up after {attempt} conflicting writes: {change.message}")
                    raise
                logger.info(f"Revision {revision} went stale, retrying ({attempt}/{self.max_attempts})")
                continue
            logger.info(f"Committed: {change.message}")
            return change.result

    def _notify(self, text: str) -> None:
        if self.notifier:
            self.notifier.notify(text)

    # ── Tasks ────────────────────────────────────────────────────────────────

    def add_task(self, task: Dict[str, Any], project_id: Optional[str] = None,
                 column: Optional[str] = None) -> Dict[str, Any]:
        """Append a new task. Re-adding an id that already exists returns the stored task."""
        if not isinstance(task, dict):
            raise InvalidRequest("Missing task")
        title = _require_text(task.get("title"), "task.title")
        placement = _placement(column) if column else None

        fields = {k: v for k, v in task.items() if k in TASK_FIELDS}
        description = task.get("description")
        if isinstance(description, str):
            description = description.strip() or None
        fields.update({
            "id": str(task.get("id") or make_id("u")),
            "title": title,
            "description": description if isinstance(description, str) else None,
            "priority": _clean_priority(task.get("priority")),
            "tags": _clean_tags(task.get("tags")) + ["user-added"],
            "createdAt": task.get("createdAt") or self.clock(),
        })
        if "subtasks" in fields:
            fields["subtasks"] = _clean_subtasks(fields["subtasks"])
        if isinstance(placement, AssigneePlacement):
            fields["assignee"] = placement.name
        new_task = Task.from_dict({k: v for k, v in fields.items() if v is not None}).to_dict()

        def apply(content):
            try:
                existing = locate_task(content, new_task["id"])
                return _Change(existing.task, None)
            except NotFound:
                pass
            if project_id:
                project = find_project(content, project_id)
                target = placement_storage_column(placement) if placement else Column.TODO
                ensure_columns(project)[target.value].append(new_task)
            else:
                content.setdefault("todos", []).append(new_task)
            return _Change(new_task, f"Add task: {new_task['title']}")

        return self._commit(apply)

    def move_task(self, task_id: str, project_id: Optional[str], target_column: str) -> Dict[str, Any]:
        """Move a task to a column, or into an assignee's lane (the `upnext` array)."""
        _require_text(task_id, "taskId")
        placement = _placement(target_column)
        dest = placement_storage_column(placement).value

        def apply(content):
            loc = locate_task(content, task_id, project_id)
            if loc.project is None:
                raise InvalidRequest(f"Task {task_id} is not on a project board")
            result = {"taskId": task_id, "from": loc.column, "to": dest}
            task = dict(loc.task)
            if isinstance(placement, AssigneePlacement):
                task["assignee"] = placement.name
            if dest == Column.DONE.value:
                task.setdefault("completedAt", self.clock())
            else:
                task.pop("completedAt", None)
            if loc.column == dest and task == loc.task:
                return _Change(result, None)
            remove_task(loc.project, task_id)
            loc.project["tasks"][dest].append(task)
            label = placement.name if isinstance(placement, AssigneePlacement) else dest
            return _Change(result, f'Move task "{task.get("title", task_id)}" to {label}')

        return self._commit(apply)

    def set_completion(self, task_id: str, project_id: Optional[str], completed: bool = True) -> Dict[str, Any]:
        """Complete (→ done) or reopen (→ todo) a task. Already in that state: no write."""
        _require_text(task_id, "taskId")
        completed = completed is not False
        result = {"taskId": task_id, "completed": completed}
        verb = "Complete" if completed else "Reopen"

        def apply(content):
            loc = locate_task(content, task_id, project_id)
            task = loc.task
            if loc.project is None:
                if bool(task.get("completedAt")) == completed:
                    return _Change(result, None)
                if completed:
                    task["completedAt"] = self.clock()
                else:
                    task.pop("completedAt", None)
                return _Change(result, f"{verb} task: {task.get('title', task_id)}")

            if (loc.column == Column.DONE.value) == completed:
                return _Change(result, None)
            task = dict(task)
            remove_task(loc.project, task_id)
            if completed:
                task["completedAt"] = self.clock()
                loc.project["tasks"][Column.DONE.value].append(task)
            else:
                task.pop("completedAt", None)
                loc.project["tasks"][Column.TODO.value].append(task)
            return _Change(result, f"{verb} task: {task.get('title', task_id)}")

        return self._commit(apply)

    def edit_task(self, task_id: str, project_id: Optional[str], updates: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge editable fields into a task. A null value removes the field."""
        _require_text(task_id, "taskId")
        if not isinstance(updates, dict) or not updates:
            raise InvalidRequest("Missing updates")
        unknown = set(updates) - EDITABLE_TASK_FIELDS
        if unknown:
            raise InvalidRequest(f"Fields not editable: {', '.join(sorted(unknown))}")

        clean = dict(updates)
        if "title" in clean:
            clean["title"] = _require_text(clean["title"], "title")
        if "priority" in clean:
            clean["priority"] = _clean_priority(clean["priority"])
        if "tags" in clean:
            clean["tags"] = _clean_tags(clean["tags"])
        if clean.get("subtasks") is not None:
            clean["subtasks"] = _clean_subtasks(clean["subtasks"])
        if isinstance(clean.get("description"), str):
            clean["description"] = clean["description"].strip() or None

        def apply(content):
            loc = locate_task(content, task_id, project_id)
            merged = dict(loc.task)
            for key, value in clean.items():
                if value is None:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            merged = Task.from_dict(merged).to_dict()
            if merged == Task.from_dict(loc.task).to_dict():
                return _Change(merged, None)
            if loc.project is None:
                content["todos"][loc.index] = merged
            else:
                loc.container[loc.index] = merged
            return _Change(merged, f"Edit task: {merged['title']}")

        return self._commit(apply)

    def mutate_subtask(self, task_id: str, project_id: Optional[str], action: str,
                       subtask_id: Optional[str] = None,
                       subtask: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """add | toggle | delete a subtask. Toggle accepts an explicit `done` in `subtask`."""
        _require_text(task_id, "taskId")
        if action not in ("add", "toggle", "delete"):
            raise InvalidRequest(f"Unknown subtaskAction: {action}")
        if action == "add":
            if not isinstance(subtask, dict):
                raise InvalidRequest("Missing subtask")
            new_sub = _clean_subtasks([subtask])[0]
        else:
            subtask_id = _require_text(subtask_id, "subtaskId")

        def apply(content):
            loc = locate_task(content, task_id, project_id)
            if not isinstance(loc.task.get("subtasks"), list):
                loc.task["subtasks"] = []
            subs = loc.task["subtasks"]
            title = loc.task.get("title", task_id)
            if action == "add":
                existing = _find_by_id(subs, new_sub["id"])
                if existing:
                    return _Change({"subtask": existing}, None)
                subs.append(new_sub)
                return _Change({"subtask": new_sub}, f"Add subtask to {title}: {new_sub['title']}")

            existing = _find_by_id(subs, subtask_id)
            if existing is None:
                raise NotFound(f"Subtask not found: {subtask_id}")
            if action == "delete":
                loc.task["subtasks"] = [s for s in subs if s.get("id") != subtask_id]
                return _Change({}, f"Delete subtask from {title}: {existing.get('title', subtask_id)}")

            wanted = (subtask or {}).get("done")
            done = (not existing.get("done")) if wanted is None else bool(wanted)
            if bool(existing.get("done")) == done:
                return _Change({"subtask": existing}, None)
            existing["done"] = done
            return _Change({"subtask": existing}, f"{'Check' if done else 'Uncheck'} subtask on {title}: "
                                                  f"{existing.get('title', subtask_id)}")

        return self._commit(apply)

    # ── Ideas ────────────────────────────────────────────────────────────────

    def add_idea(self, title: str, idea: Optional[str] = None, tags: Optional[List[str]] = None,
                 idea_id: Optional[str] = None, created_at: Optional[str] = None) -> Dict[str, Any]:
        title = _require_text(title, "title")
        new_idea = {
            "id": str(idea_id or make_id("idea")),
            "title": title,
            "tags": _clean_tags(tags),
            "createdAt": created_at or self.clock(),
        }
        if isinstance(idea, str) and idea.strip():
            new_idea["idea"] = idea.strip()

        def apply(content):
            ideas = content.setdefault("ideas", [])
            existing = _find_by_id(ideas, new_idea["id"])
            if existing:
                return _Change((existing, False), None)
            ideas.append(new_idea)
            return _Change((new_idea, True), f"Add idea: {title}")

        stored, created = self._commit(apply)
        if created:
            self._notify(idea_message(title))
        return stored

    def delete_idea(self, idea_id: str) -> None:
        """Remove an idea. Deleting an unknown id is a no-op."""
        idea_id = _require_text(idea_id, "id")

        def apply(content):
            ideas = content.setdefault("ideas", [])
            if _find_by_id(ideas, idea_id) is None:
                return _Change(None, None)
            content["ideas"] = [i for i in ideas if i.get("id") != idea_id]
            return _Change(None, f"Delete idea: {idea_id}")

        self._commit(apply)

    def edit_idea(self, idea_id: str, title: Optional[str] = None, idea: Optional[str] = None,
                  tags: Optional[List[str]] = None) -> Dict[str, Any]:
        idea_id = _require_text(idea_id, "id")
        if title is not None:
            title = _require_text(title, "title")
        if tags is not None:
            tags = _clean_tags(tags)

        def apply(content):
            existing = _find_by_id(content.setdefault("ideas", []), idea_id)
            if existing is None:
                raise NotFound(f"Idea not found: {idea_id}")
            before = dict(existing)
            if title is not None:
                existing["title"] = title
            if idea is not None:
                if idea.strip():
                    existing["idea"] = idea.strip()
                else:
                    existing.pop("idea", None)
            if tags is not None:
                existing["tags"] = tags
            if existing == before:
                return _Change(existing, None)
            return _Change(existing, f"Edit idea: {existing.get('title', idea_id)}")

        return self._commit(apply)

    # ── Change requests ──────────────────────────────────────────────────────

    def submit_change_request(self, text: str, request_id: Optional[str] = None,
                              created_at: Optional[str] = None) -> str:
        text = _require_text(text, "text")
        req = {
            "id": str(request_id or make_id("cr")),
            "text": text,
            "createdAt": created_at or self.clock(),
            "status": "pending",
        }

        def apply(content):
            requests_ = content.setdefault("changeRequests", [])
            if _find_by_id(requests_, req["id"]):
                return _Change((req["id"], False), None)
            requests_.append(req)
            return _Change((req["id"], True), f"Change request: {text[:60]}")

        req_id, created = self._commit(apply)
        if created:
            self._notify(change_request_message(text))
        return req_id

    def cancel_change_request(self, request_id: str) -> None:
        """Mark a change request cancelled. Unknown or already-cancelled ids are a no-op."""
        request_id = _require_text(request_id, "id")

        def apply(content):
            req = _find_by_id(content.get("changeRequests") or [], request_id)
            if req is None or req.get("status") == "cancelled":
                return _Change(None, None)
            req["status"] = "cancelled"
            req["cancelledAt"] = self.clock()
            return _Change(None, f"Cancel change request: {(req.get('text') or request_id)[:50]}")

        self._commit(apply)

    # ── Today plan ───────────────────────────────────────────────────────────

    def populate_today(self, day, weights: Dict[str, int], force: bool = False) -> Optional[Dict[str, Any]]:
        """Write today's plan. Returns None when a plan for `day` already exists."""

        def apply(content):
            if not force and already_planned(content, day):
                return _Change(None, None)
            plan = {
                "date": day.isoformat(),
                "tasks": plan_today(content, weights),
                "populatedAt": self.clock(),
            }
            content["todayPlan"] = plan
            return _Change(plan, f"Populate today's tasks for {day.isoformat()}")

        return self._commit(apply)
