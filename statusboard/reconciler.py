"""
View projector: snapshot + local overrides → the board as it should render.

`project()` is a pure function of its two arguments. It never reads the
clock or the override store, and it never mutates the document.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .overrides import LocalTask, Overrides, TaskOverride, effective_column
from .schema import (
    ChangeRequest,
    Column,
    Document,
    Idea,
    Project,
    Task,
    placement_storage_column,
)

# Columns of the rendered board, left to right
VIEW_COLUMNS = [Column.TODO, Column.UPNEXT, Column.DONE]


@dataclass
class TaskView:
    task: Task
    column: Column
    project_id: Optional[str] = None
    overridden: bool = False   # some local override changed how this task renders
    pending: bool = False      # created locally, not yet in a snapshot
    reminder: Optional[str] = None

    @property
    def id(self) -> str:
        return self.task.id

    @property
    def completed(self) -> bool:
        return self.column == Column.DONE


@dataclass
class ProjectView:
    project: Project
    columns: Dict[Column, List[TaskView]] = field(default_factory=lambda: {c: [] for c in VIEW_COLUMNS})

    @property
    def id(self) -> str:
        return self.project.id

    def ids(self, column: Column) -> List[str]:
        return [tv.id for tv in self.columns[column]]

    def lanes(self) -> Dict[str, List[TaskView]]:
        """Upnext split by assignee; unassigned tasks are under ''."""
        out: Dict[str, List[TaskView]] = {}
        for tv in self.columns[Column.UPNEXT]:
            out.setdefault(tv.task.assignee or "", []).append(tv)
        return out


@dataclass
class IdeaView:
    idea: Idea
    pending: bool = False


@dataclass
class ChangeRequestView:
    request: ChangeRequest
    pending: bool = False


@dataclass
class BoardView:
    projects: List[ProjectView] = field(default_factory=list)
    todos: List[TaskView] = field(default_factory=list)
    ideas: List[IdeaView] = field(default_factory=list)
    change_requests: List[ChangeRequestView] = field(default_factory=list)
    today_plan: Optional[Dict[str, Any]] = None
    last_updated: Optional[str] = None

    def project(self, project_id: str) -> Optional[ProjectView]:
        for pv in self.projects:
            if pv.id == project_id:
                return pv
        return None

    def find_task(self, task_id: str) -> Optional[TaskView]:
        """Look a task up by id alone; ids are unique across the board."""
        for pv in self.projects:
            for tasks in pv.columns.values():
                for tv in tasks:
                    if tv.id == task_id:
                        return tv
        for tv in self.todos:
            if tv.id == task_id:
                return tv
        return None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Field merge
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def merge_fields(task: Task, override: Optional[TaskOverride]) -> Task:
    """
    Canonical task shallow-merged with the local field patch.

    A patch that carries no subtasks (absent or empty list) keeps the
    canonical subtasks, so editing a title never wipes subtask state.
    """
    if override is None or (not override.patch and not override.subtask_toggles
                            and not override.subtasks_added):
        return task
    merged = task.to_dict()
    for key, value in override.patch.items():
        if key == "id":
            continue
        if key == "subtasks" and not value and task.subtasks:
            continue
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value

    subtasks = [dict(s) for s in merged.get("subtasks") or []]
    known = {s.get("id") for s in subtasks}
    for added in override.subtasks_added:
        if added.get("id") not in known:
            subtasks.append(dict(added))
    for sub in subtasks:
        if sub.get("id") in override.subtask_toggles:
            sub["done"] = override.subtask_toggles[sub.get("id")]
    if subtasks or "subtasks" in merged:
        merged["subtasks"] = subtasks
    return Task.from_dict(merged)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Ordering
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def order_column(tasks: List[TaskView], column: Column, manual: Optional[List[str]]) -> List[TaskView]:
    """
    Manual order first: listed tasks by list position, unlisted after them
    in their existing relative order. Without a manual order, sort by
    priority, except done which stays in arrival order. Both sorts are stable.
    """
    if manual:
        position = {task_id: i for i, task_id in enumerate(manual)}
        last = len(position)
        return sorted(tasks, key=lambda tv: position.get(tv.id, last))
    if column == Column.DONE:
        return list(tasks)
    return sorted(tasks, key=lambda tv: tv.task.priority.rank)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Projection
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _task_view(task: Task, canonical: Column, overrides: Overrides,
               project_id: Optional[str], pending: bool = False) -> TaskView:
    override = overrides.tasks.get(task.id)
    merged = merge_fields(task, override)
    column, assignee = effective_column(override, canonical, merged.assignee)
    if assignee != merged.assignee:
        merged = Task.from_dict(dict(merged.to_dict(), assignee=assignee))
    return TaskView(
        task=merged,
        column=column,
        project_id=project_id,
        overridden=override is not None and not override.is_empty(),
        pending=pending,
        reminder=overrides.reminders.get(task.id),
    )


def _local_canonical_column(local: LocalTask) -> Column:
    return placement_storage_column(local.placement) if local.placement else Column.TODO


def _project_view(project: Project, overrides: Overrides, locals_: List[LocalTask]) -> ProjectView:
    pv = ProjectView(project=project)
    for col in (Column.TODO, Column.UPNEXT, Column.IN_PROGRESS, Column.DONE):
        for task in project.tasks.get(col, []):
            tv = _task_view(task, col, overrides, project.id)
            pv.columns[tv.column].append(tv)
    for local in locals_:
        task = Task.from_dict(local.task)
        tv = _task_view(task, _local_canonical_column(local), overrides, project.id, pending=True)
        pv.columns[tv.column].append(tv)
    for col in VIEW_COLUMNS:
        pv.columns[col] = order_column(pv.columns[col], col, overrides.order.get((project.id, col.value)))
    return pv


def _project_ideas(document: Document, overrides: Overrides) -> List[IdeaView]:
    out = []
    seen = set()
    for idea in document.ideas:
        seen.add(idea.id)
        entry = overrides.ideas.get(idea.id) or {}
        if entry.get("op") == "delete":
            continue
        if entry.get("op") in ("add", "edit") and entry.get("idea"):
            idea = Idea.from_dict(dict(idea.to_dict(), **entry["idea"]))
        out.append(IdeaView(idea=idea))
    for idea_id, entry in overrides.ideas.items():
        if idea_id in seen or entry.get("op") != "add":
            continue
        out.append(IdeaView(idea=Idea.from_dict(dict(entry.get("idea") or {}, id=idea_id)), pending=True))
    return out


def _project_change_requests(document: Document, overrides: Overrides) -> List[ChangeRequestView]:
    out = []
    seen = set()
    for req in document.change_requests:
        seen.add(req.id)
        local = overrides.change_requests.get(req.id)
        if local and local.get("status") and local.get("status") != req.status:
            req = ChangeRequest.from_dict(dict(req.to_dict(), status=local["status"],
                                               cancelledAt=local.get("cancelledAt")))
        out.append(ChangeRequestView(request=req))
    for req_id, local in overrides.change_requests.items():
        # Only locally submitted requests carry text; a bare cancel of an unknown id renders nothing
        if req_id in seen or not local.get("text"):
            continue
        fields = {k: v for k, v in local.items() if k != "local"}
        out.append(ChangeRequestView(request=ChangeRequest.from_dict(dict(fields, id=req_id)), pending=True))
    return out


def project(document: Document, overrides: Overrides) -> BoardView:
    """Project the effective board. Same inputs, same output."""
    snapshot_ids = set()
    for p in document.projects:
        for tasks in p.tasks.values():
            snapshot_ids.update(t.id for t in tasks)
    snapshot_ids.update(t.id for t in document.todos)

    # Local tasks the snapshot already has are matched by id, never duplicated
    locals_by_project: Dict[Optional[str], List[LocalTask]] = {}
    for task_id, local in overrides.local_tasks.items():
        if task_id in snapshot_ids:
            continue
        locals_by_project.setdefault(local.project_id, []).append(local)

    projects = [_project_view(p, overrides, locals_by_project.get(p.id, [])) for p in document.projects]

    todos = []
    for task in document.todos:
        canonical = Column.DONE if task.completed_at else Column.TODO
        todos.append(_task_view(task, canonical, overrides, None))
    known_projects = {p.id for p in document.projects}
    for project_id, locals_ in locals_by_project.items():
        if project_id in known_projects:
            continue
        # No project (or one the snapshot no longer has): render with the loose todos
        for local in locals_:
            todos.append(_task_view(Task.from_dict(local.task), Column.TODO, overrides, None, pending=True))

    return BoardView(
        projects=projects,
        todos=todos,
        ideas=_project_ideas(document, overrides),
        change_requests=_project_change_requests(document, overrides),
        today_plan=document.today_plan,
        last_updated=document.last_updated,
    )


def task_positions(view: BoardView) -> Dict[str, Tuple[Optional[str], Column, int]]:
    """id → (project, column, index) for every task on the rendered board."""
    out = {}
    for pv in view.projects:
        for col, tasks in pv.columns.items():
            for i, tv in enumerate(tasks):
                out[tv.id] = (pv.id, col, i)
    for i, tv in enumerate(view.todos):
        out[tv.id] = (None, tv.column, i)
    return out
