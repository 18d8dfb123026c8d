# Status board — mutation dispatcher
#
# Every user action is recorded in the override store first, so the board
# re-renders with it immediately, then sent to the server in the background.
# Transient failures go to a bounded retry queue; the override stays either way.

import heapq
import itertools
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from .client import BoardClient, MutationResult
from .errors import BoardError, InvalidRequest
from .overrides import LocalTask, OverrideStore
from .reconciler import BoardView
from .schema import EDITABLE_TASK_FIELDS, AssigneePlacement, Task, parse_placement
from .util import make_id, utc_now

logger = logging.getLogger(__name__)

EVENTS = ("mutation_succeeded", "mutation_failed")


class _Pending:
    """One remote call waiting for its final outcome."""

    def __init__(self, action: str, call: Callable[[], MutationResult], future: Future):
        self.action = action
        self.call = call
        self.future = future
        self.attempts = 0
        self.due = 0.0


class MutationDispatcher:
    """Optimistic write path: local override now, remote request later."""

    def __init__(
        self,
        store: OverrideStore,
        client: BoardClient,
        view_provider: Optional[Callable[[], Optional[BoardView]]] = None,
        executor: Optional[Executor] = None,
        max_attempts: int = 3,
        backoff: float = 2.0,
        queue_size: int = 1000,
        clock: Callable[[], str] = utc_now,
    ):
        self.store = store
        self.client = client
        self.view_provider = view_provider
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="mutation")
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.clock = clock
        self.subscribers: Dict[str, list] = {}

        self.queue_size = max(1, queue_size)
        self._retry_queue: List[tuple] = []  # heap of (due, seq, _Pending)
        self._retry_seq = itertools.count()
        self._retry_lock = threading.Lock()
        self._retry_wake = threading.Event()
        self._retry_thread: Optional[threading.Thread] = None
        self._closed = False

    # ── Subscribers ──────────────────────────────────────────────────────────

    def subscribe(self, event_type: str, callback: Callable[[MutationResult], None]) -> None:
        """Register a callback for mutation_succeeded / mutation_failed."""
        if event_type not in EVENTS:
            raise ValueError(f"Unknown event: {event_type}")
        self.subscribers.setdefault(event_type, []).append(callback)

    def _emit(self, event_type: str, result: MutationResult) -> None:
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(result)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    # ── Remote submission ────────────────────────────────────────────────────

    def _submit(self, action: str, call: Callable[[], MutationResult]) -> Future:
        pending = _Pending(action, call, Future())
        self.executor.submit(self._attempt, pending)
        return pending.future

    def _attempt(self, pending: _Pending) -> None:
        pending.attempts += 1
        try:
            result = pending.call()
        except Exception as e:
            # The client reports failures as results; anything raised here is a bug
            logger.exception(f"{pending.action} raised instead of returning a result")
            result = MutationResult(pending.action, ok=False, error=BoardError(str(e)))
        result.attempts = pending.attempts

        if result.ok:
            logger.debug(f"{pending.action} synced after {pending.attempts} attempt(s)")
            self._finish(pending, "mutation_succeeded", result)
            return
        if result.retryable and pending.attempts < self.max_attempts and not self._closed:
            pending.due = time.monotonic() + self.backoff * (2 ** (pending.attempts - 1))
            logger.info(f"{pending.action} failed ({result.error}), retry "
                        f"{pending.attempts}/{self.max_attempts - 1} queued")
            self._enqueue(pending)
            return
        logger.warning(f"{pending.action} failed after {pending.attempts} attempt(s): {result.error}")
        self._finish(pending, "mutation_failed", result)

    def _finish(self, pending: _Pending, event_type: str, result: MutationResult) -> None:
        self._emit(event_type, result)
        pending.future.set_result(result)

    def _enqueue(self, pending: _Pending) -> None:
        dropped = None
        with self._retry_lock:
            if len(self._retry_queue) >= self.queue_size:
                # Full: give up on the entry that has waited longest
                oldest = min(self._retry_queue, key=lambda entry: entry[1])
                self._retry_queue.remove(oldest)
                heapq.heapify(self._retry_queue)
                dropped = oldest[2]
            heapq.heappush(self._retry_queue, (pending.due, next(self._retry_seq), pending))
            if not (self._retry_thread and self._retry_thread.is_alive()):
                self._retry_thread = threading.Thread(target=self._retry_worker, name="mutation-retry",
                                                      daemon=True)
                self._retry_thread.start()
        self._retry_wake.set()
        if dropped is not None:
            logger.warning(f"Retry queue full, giving up on {dropped.action}")
            self._finish(dropped, "mutation_failed", MutationResult(
                dropped.action, ok=False, error=BoardError("Retry queue overflow"),
                attempts=dropped.attempts))

    def _retry_worker(self) -> None:
        """Drain the retry queue soonest-due first, waiting out each entry's backoff."""
        while not self._closed:
            with self._retry_lock:
                if not self._retry_queue:
                    self._retry_thread = None
                    return
                self._retry_wake.clear()
                delay = self._retry_queue[0][0] - time.monotonic()
                if delay <= 0:
                    pending = heapq.heappop(self._retry_queue)[2]
            if delay > 0:
                self._retry_wake.wait(delay)
                continue
            self._attempt(pending)

    @property
    def queued(self) -> int:
        with self._retry_lock:
            return len(self._retry_queue)

    def close(self, wait: bool = True) -> None:
        """Stop retrying and shut the executor down. Queued retries are abandoned."""
        self._closed = True
        self._retry_wake.set()
        with self._retry_lock:
            abandoned = [entry[2] for entry in sorted(self._retry_queue, key=lambda entry: entry[1])]
            self._retry_queue.clear()
        for pending in abandoned:
            logger.warning(f"Abandoning queued retry of {pending.action}")
            self._finish(pending, "mutation_failed", MutationResult(
                pending.action, ok=False, error=BoardError("Dispatcher closed"),
                attempts=pending.attempts))
        self.executor.shutdown(wait=wait)

    # ── Lookups ──────────────────────────────────────────────────────────────

    def _current_view(self) -> Optional[BoardView]:
        return self.view_provider() if self.view_provider else None

    def is_pending(self, entity_id: str) -> bool:
        """True while a locally created task, idea or change request is not yet in a snapshot."""
        if self.store.scope("local_tasks").get(entity_id) is not None:
            return True
        idea = self.store.scope("ideas").get(entity_id)
        if idea is not None and idea.get("op") == "add":
            return True
        request = self.store.scope("change_requests").get(entity_id)
        return request is not None and bool(request.get("local"))

    # ── Tasks ────────────────────────────────────────────────────────────────

    def toggle_completion(self, task_id: str, project_id: Optional[str],
                          completed: Optional[bool] = None) -> Future:
        """Mark a task done or not done. Without `completed`, flip what the board shows now."""
        if completed is None:
            view = self._current_view()
            shown = view.find_task(task_id) if view else None
            if shown is None:
                raise InvalidRequest(f"Cannot toggle unknown task: {task_id}")
            completed = not shown.completed
        # A completion supersedes any earlier manual placement
        self.store.update_task_override(task_id, completed=bool(completed), placement=None)
        return self._submit("complete", lambda: self.client.set_completion(task_id, project_id, bool(completed)))

    def move(self, task_id: str, project_id: Optional[str], target_column: str) -> Future:
        """Move a task to a column or an assignee lane."""
        try:
            placement = parse_placement(target_column)
        except ValueError as e:
            raise InvalidRequest(f"Invalid column: {target_column!r}", str(e))
        self.store.update_task_override(task_id, placement=placement, completed=None)
        return self._submit("move", lambda: self.client.move_task(task_id, project_id, target_column))

    def edit(self, task_id: str, project_id: Optional[str], updates: Dict[str, Any]) -> Future:
        """Patch task fields. A None value removes the field."""
        if not isinstance(updates, dict) or not updates:
            raise InvalidRequest("Missing updates")
        unknown = set(updates) - EDITABLE_TASK_FIELDS
        if unknown:
            raise InvalidRequest(f"Cannot edit fields: {', '.join(sorted(unknown))}")
        clean = dict(updates)
        if "title" in clean and not str(clean["title"] or "").strip():
            raise InvalidRequest("Missing title")
        for key in ("title", "description"):
            if isinstance(clean.get(key), str):
                clean[key] = clean[key].strip() or None
        # Same normalization the server applies, so the patch can later match the snapshot
        normalized = Task.from_dict(dict(clean, id=task_id)).to_dict()
        patch = {k: (None if v is None else normalized.get(k)) for k, v in clean.items()}

        with self.store.lock:
            override = self.store.task_override(task_id)
            override.patch.update(patch)
            self.store.put_task_override(task_id, override)
        return self._submit("edit", lambda: self.client.edit_task(task_id, project_id, updates))

    def add_task(self, task: Dict[str, Any], project_id: Optional[str] = None,
                 column: Optional[str] = None) -> Future:
        """Create a task locally (pending) and send it. The id is fixed here for good."""
        if not isinstance(task, dict) or not str(task.get("title") or "").strip():
            raise InvalidRequest("Missing task.title")
        placement = None
        if column:
            try:
                placement = parse_placement(column)
            except ValueError as e:
                raise InvalidRequest(f"Invalid column: {column!r}", str(e))
        local = dict(task)
        local["id"] = str(task.get("id") or make_id("u"))
        local["title"] = str(task["title"]).strip()
        local.setdefault("createdAt", self.clock())
        if isinstance(placement, AssigneePlacement):
            local["assignee"] = placement.name
        self.store.add_local_task(LocalTask(task=local, project_id=project_id, placement=placement))
        return self._submit("add", lambda: self.client.add_task(local, project_id, column))

    def add_subtask(self, task_id: str, project_id: Optional[str], title: str) -> Future:
        title = (title or "").strip()
        if not title:
            raise InvalidRequest("Missing subtask title")
        subtask = {"id": make_id("st"), "title": title, "done": False}
        with self.store.lock:
            override = self.store.task_override(task_id)
            override.subtasks_added.append(subtask)
            self.store.put_task_override(task_id, override)
        return self._submit("subtask", lambda: self.client.subtask(task_id, project_id, "add", subtask=subtask))

    def toggle_subtask(self, task_id: str, project_id: Optional[str], subtask_id: str,
                       done: Optional[bool] = None) -> Future:
        if done is None:
            view = self._current_view()
            shown = view.find_task(task_id) if view else None
            current = next((s for s in (shown.task.subtasks or []) if s.id == subtask_id), None) if shown else None
            if current is None:
                raise InvalidRequest(f"Cannot toggle unknown subtask: {subtask_id}")
            done = not current.done
        with self.store.lock:
            override = self.store.task_override(task_id)
            override.subtask_toggles[subtask_id] = bool(done)
            self.store.put_task_override(task_id, override)
        return self._submit("subtask", lambda: self.client.subtask(
            task_id, project_id, "toggle", subtask_id=subtask_id, subtask={"done": bool(done)}))

    # ── Local-only ───────────────────────────────────────────────────────────

    def set_order(self, project_id: str, column: str, task_ids: List[str]) -> None:
        """Manual ordering of one column. Never leaves this client."""
        self.store.set_order(project_id, column, task_ids)

    def set_reminder(self, task_id: str, when: Optional[str]) -> None:
        if when:
            self.store.scope("reminders").set(task_id, when)
        else:
            self.store.scope("reminders").delete(task_id)

    # ── Ideas ────────────────────────────────────────────────────────────────

    def add_idea(self, title: str, idea: Optional[str] = None, tags: Optional[List[str]] = None) -> Future:
        title = (title or "").strip()
        if not title:
            raise InvalidRequest("Missing title")
        idea_id = make_id("idea")
        fields = {"title": title, "tags": Task.from_dict({"tags": tags}).tags, "createdAt": self.clock()}
        if isinstance(idea, str) and idea.strip():
            fields["idea"] = idea.strip()
        self.store.scope("ideas").set(idea_id, {"op": "add", "idea": fields})
        body = dict(fields, id=idea_id)
        return self._submit("idea.add", lambda: self.client.idea("add", **body))

    def delete_idea(self, idea_id: str) -> Future:
        self.store.scope("ideas").set(idea_id, {"op": "delete"})
        return self._submit("idea.delete", lambda: self.client.idea("delete", id=idea_id))

    def edit_idea(self, idea_id: str, title: Optional[str] = None, idea: Optional[str] = None,
                  tags: Optional[List[str]] = None) -> Future:
        changes: Dict[str, Any] = {}
        if title is not None:
            if not title.strip():
                raise InvalidRequest("Missing title")
            changes["title"] = title.strip()
        if idea is not None:
            changes["idea"] = idea.strip() or None
        if tags is not None:
            changes["tags"] = Task.from_dict({"tags": tags}).tags

        ideas = self.store.scope("ideas")
        with self.store.lock:
            entry = ideas.get(idea_id) or {"op": "edit", "idea": {}}
            if entry.get("op") == "delete":
                raise InvalidRequest(f"Idea was deleted: {idea_id}")
            entry["idea"] = dict(entry.get("idea") or {}, **changes)
            ideas.set(idea_id, entry)
        body = {k: ("" if k == "idea" and v is None else v) for k, v in changes.items()}
        return self._submit("idea.edit", lambda: self.client.idea("edit", id=idea_id, **body))

    # ── Change requests ──────────────────────────────────────────────────────

    def submit_change_request(self, text: str) -> Future:
        text = (text or "").strip()
        if not text:
            raise InvalidRequest("Missing text")
        request_id = make_id("cr")
        created_at = self.clock()
        self.store.scope("change_requests").set(request_id, {
            "text": text, "createdAt": created_at, "status": "pending", "local": True,
        })
        return self._submit("changeRequest.submit",
                            lambda: self.client.submit_change_request(text, request_id, created_at))

    def cancel_change_request(self, request_id: str) -> Future:
        requests_ = self.store.scope("change_requests")
        with self.store.lock:
            entry = requests_.get(request_id) or {}
            entry.update({"status": "cancelled", "cancelledAt": self.clock()})
            requests_.set(request_id, entry)
        return self._submit("changeRequest.cancel", lambda: self.client.cancel_change_request(request_id))
