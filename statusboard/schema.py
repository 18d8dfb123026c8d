"""
Status document schema.

The canonical document (status.json) looks like:

  {
    "projects": [{id, name, ..., "tasks": {"todo": [], "upnext": [], "in_progress": [], "done": []}}],
    "todos": [Task], "ideas": [Idea], "changeRequests": [ChangeRequest],
    "todayPlan": {...}, "lastUpdated": "..."
  }

Wire keys are camelCase. Unknown keys are carried in `extra` so a
load/dump cycle never drops data written by other tools.
"""
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Union


class Priority(Enum):
    """Task priority. Sort rank follows declaration order."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "Priority":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.MEDIUM

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class Column(Enum):
    """Storage columns of a project's task map."""
    TODO = "todo"
    UPNEXT = "upnext"
    IN_PROGRESS = "in_progress"
    DONE = "done"


# Iteration order used when scanning a project for a task id
STORAGE_COLUMNS = [Column.TODO, Column.UPNEXT, Column.IN_PROGRESS, Column.DONE]

# Columns a client may target directly; any other target is an assignee name
PLACEABLE_COLUMNS = {Column.TODO, Column.UPNEXT, Column.DONE}


class ProjectStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETE = "complete"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "ProjectStatus":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.ACTIVE


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Placement: where a user put a task
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class ColumnPlacement:
    column: Column

    def to_dict(self) -> Dict[str, str]:
        return {"column": self.column.value}


@dataclass(frozen=True)
class AssigneePlacement:
    """An assignee lane. Stored in the `upnext` array with `assignee` set."""
    name: str

    def to_dict(self) -> Dict[str, str]:
        return {"assignee": self.name}


Placement = Union[ColumnPlacement, AssigneePlacement]


def parse_placement(target: str) -> Placement:
    """
    Parse a UI column identifier.

    `todo`, `upnext`, `done` (and the `__todo__` style aliases the board
    sends) are columns; anything else is the name of an assignee.
    """
    if not isinstance(target, str) or not target.strip():
        raise ValueError("column identifier must be a non-empty string")
    value = target.strip()
    bare = value.strip("_") if value.startswith("__") and value.endswith("__") else value
    for col in PLACEABLE_COLUMNS:
        if bare == col.value:
            return ColumnPlacement(col)
    return AssigneePlacement(value)


def placement_from_dict(data: Optional[Dict[str, Any]]) -> Optional[Placement]:
    if not data:
        return None
    if data.get("assignee"):
        return AssigneePlacement(data["assignee"])
    if data.get("column"):
        return ColumnPlacement(Column(data["column"]))
    return None


def placement_storage_column(placement: Placement) -> Column:
    if isinstance(placement, AssigneePlacement):
        return Column.UPNEXT
    return placement.column


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Entities
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _dedupe(values) -> List[str]:
    seen = []
    for v in values or []:
        if isinstance(v, str) and v not in seen:
            seen.append(v)
    return seen


def _split_extra(data: Dict[str, Any], known: set) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


def _put(out: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        out[key] = value


@dataclass
class Subtask:
    id: str
    title: str
    done: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "done": self.done}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subtask":
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title", ""),
            done=bool(data.get("done", False)),
        )


TASK_FIELDS = {
    "id", "title", "description", "priority", "tags", "assignee",
    "dueDate", "subtasks", "createdAt", "completedAt",
}

# Fields a client may change through an edit
EDITABLE_TASK_FIELDS = {"title", "description", "priority", "tags", "assignee", "dueDate", "subtasks"}


@dataclass
class Task:
    """One card on the board."""
    id: str
    title: str
    description: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    tags: List[str] = field(default_factory=list)
    assignee: Optional[str] = None
    due_date: Optional[str] = None
    subtasks: Optional[List[Subtask]] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        out["id"] = self.id
        out["title"] = self.title
        _put(out, "description", self.description)
        out["priority"] = self.priority.value
        out["tags"] = list(self.tags)
        _put(out, "assignee", self.assignee)
        _put(out, "dueDate", self.due_date)
        if self.subtasks is not None:
            out["subtasks"] = [s.to_dict() for s in self.subtasks]
        _put(out, "createdAt", self.created_at)
        _put(out, "completedAt", self.completed_at)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        subtasks = data.get("subtasks")
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title", ""),
            description=data.get("description"),
            priority=Priority.from_str(data.get("priority")),
            tags=_dedupe(data.get("tags")),
            assignee=data.get("assignee") or None,
            due_date=data.get("dueDate"),
            subtasks=[Subtask.from_dict(s) for s in subtasks] if isinstance(subtasks, list) else None,
            created_at=data.get("createdAt"),
            completed_at=data.get("completedAt"),
            extra=_split_extra(data, TASK_FIELDS),
        )


PROJECT_FIELDS = {"id", "name", "description", "color", "icon", "status", "tasks"}


@dataclass
class Project:
    id: str
    name: str
    description: str = ""
    color: str = ""
    icon: str = ""
    status: ProjectStatus = ProjectStatus.ACTIVE
    tasks: Dict[Column, List[Task]] = field(default_factory=lambda: {c: [] for c in STORAGE_COLUMNS})
    extra: Dict[str, Any] = field(default_factory=dict)

    def column(self, col: Column) -> List[Task]:
        return self.tasks.setdefault(col, [])

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        out.update({
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
            "status": self.status.value,
            "tasks": {c.value: [t.to_dict() for t in self.tasks.get(c, [])] for c in STORAGE_COLUMNS},
        })
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        raw_tasks = data.get("tasks") or {}
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            description=data.get("description", ""),
            color=data.get("color", ""),
            icon=data.get("icon", ""),
            status=ProjectStatus.from_str(data.get("status")),
            tasks={c: [Task.from_dict(t) for t in raw_tasks.get(c.value) or []] for c in STORAGE_COLUMNS},
            extra=_split_extra(data, PROJECT_FIELDS),
        )


IDEA_FIELDS = {"id", "title", "idea", "tags", "createdAt"}


@dataclass
class Idea:
    id: str
    title: str
    idea: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        out["id"] = self.id
        out["title"] = self.title
        _put(out, "idea", self.idea)
        out["tags"] = list(self.tags)
        _put(out, "createdAt", self.created_at)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Idea":
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title", ""),
            idea=data.get("idea"),
            tags=_dedupe(data.get("tags")),
            created_at=data.get("createdAt"),
            extra=_split_extra(data, IDEA_FIELDS),
        )


CHANGE_REQUEST_FIELDS = {"id", "text", "createdAt", "status", "cancelledAt"}


@dataclass
class ChangeRequest:
    id: str
    text: str
    created_at: Optional[str] = None
    status: str = "pending"
    cancelled_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        out["id"] = self.id
        out["text"] = self.text
        _put(out, "createdAt", self.created_at)
        out["status"] = self.status
        _put(out, "cancelledAt", self.cancelled_at)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeRequest":
        return cls(
            id=str(data.get("id", "")),
            text=data.get("text", ""),
            created_at=data.get("createdAt"),
            status=data.get("status", "pending"),
            cancelled_at=data.get("cancelledAt"),
            extra=_split_extra(data, CHANGE_REQUEST_FIELDS),
        )


DOCUMENT_FIELDS = {"projects", "todos", "ideas", "changeRequests", "todayPlan", "lastUpdated"}


@dataclass
class Document:
    """One snapshot of status.json."""
    projects: List[Project] = field(default_factory=list)
    todos: List[Task] = field(default_factory=list)
    ideas: List[Idea] = field(default_factory=list)
    change_requests: List[ChangeRequest] = field(default_factory=list)
    today_plan: Optional[Dict[str, Any]] = None
    last_updated: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def project(self, project_id: str) -> Optional[Project]:
        for p in self.projects:
            if p.id == project_id:
                return p
        return None

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        out.update({
            "projects": [p.to_dict() for p in self.projects],
            "todos": [t.to_dict() for t in self.todos],
            "ideas": [i.to_dict() for i in self.ideas],
            "changeRequests": [c.to_dict() for c in self.change_requests],
        })
        _put(out, "todayPlan", self.today_plan)
        _put(out, "lastUpdated", self.last_updated)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        return cls(
            projects=[Project.from_dict(p) for p in data.get("projects") or []],
            todos=[Task.from_dict(t) for t in data.get("todos") or []],
            ideas=[Idea.from_dict(i) for i in data.get("ideas") or []],
            change_requests=[ChangeRequest.from_dict(c) for c in data.get("changeRequests") or []],
            today_plan=data.get("todayPlan"),
            last_updated=data.get("lastUpdated"),
            extra=_split_extra(data, DOCUMENT_FIELDS),
        )
