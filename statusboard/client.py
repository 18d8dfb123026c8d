# Status board — HTTP client for the board API
#
# Mutation calls never raise: the outcome comes back as a MutationResult so
# the dispatcher can decide between "done", "retry later" and "give up".
# snapshot() raises NetworkFailure / ParseFailure for the fetcher.

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from .errors import TRANSIENT_ERRORS, BoardError, NetworkFailure, ParseFailure, error_for_status

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    """Outcome of one remote mutation request."""
    action: str
    ok: bool
    status: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BoardError] = None
    attempts: int = 1

    @property
    def retryable(self) -> bool:
        return not self.ok and isinstance(self.error, TRANSIENT_ERRORS)


class BoardClient:
    """Client for the board server's /api endpoints."""

    def __init__(self, base_url: str = "http://127.0.0.1:3000", timeout: float = 10.0,
                 api_key: str = "", session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    # ── Read ─────────────────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """GET the live document, bypassing any cache."""
        try:
            r = self.session.get(
                f"{self.base_url}/api/status",
                headers={"Cache-Control": "no-cache"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkFailure("Snapshot request failed", str(e))
        if not r.ok:
            raise NetworkFailure(f"Snapshot request failed: {r.status_code}", r.text[:200])
        try:
            data = r.json()
        except ValueError as e:
            raise ParseFailure("Snapshot is not valid JSON", str(e))
        if not isinstance(data, dict):
            raise ParseFailure("Snapshot root must be a JSON object")
        return data

    # ── Mutations ────────────────────────────────────────────────────────────

    def post(self, action: str, path: str, body: Dict[str, Any]) -> MutationResult:
        try:
            r = self.session.post(f"{self.base_url}{path}", json=body,
                                  headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            return MutationResult(action, ok=False, error=NetworkFailure(f"{action} request failed", str(e)))
        try:
            data = r.json()
        except ValueError:
            if r.ok:
                return MutationResult(action, ok=False, status=r.status_code,
                                      error=ParseFailure(f"{action} response is not valid JSON"))
            data = {}
        if r.ok:
            return MutationResult(action, ok=True, status=r.status_code, data=data)
        message = data.get("error") or f"{action} failed: {r.status_code}"
        return MutationResult(action, ok=False, status=r.status_code, data=data,
                              error=error_for_status(r.status_code, message, data.get("detail")))

    def add_task(self, task: Dict[str, Any], project_id: Optional[str] = None,
                 column: Optional[str] = None) -> MutationResult:
        return self.post("add", "/api/tasks",
                         {"action": "add", "task": task, "projectId": project_id, "column": column})

    def move_task(self, task_id: str, project_id: Optional[str], target_column: str) -> MutationResult:
        return self.post("move", "/api/tasks", {
            "action": "move", "taskId": task_id, "projectId": project_id, "targetColumn": target_column,
        })

    def set_completion(self, task_id: str, project_id: Optional[str], completed: bool) -> MutationResult:
        return self.post("complete", "/api/tasks", {
            "action": "complete", "taskId": task_id, "projectId": project_id, "completed": completed,
        })

    def edit_task(self, task_id: str, project_id: Optional[str], updates: Dict[str, Any]) -> MutationResult:
        return self.post("edit", "/api/tasks", {
            "action": "edit", "taskId": task_id, "projectId": project_id, "updates": updates,
        })

    def subtask(self, task_id: str, project_id: Optional[str], subtask_action: str,
                subtask_id: Optional[str] = None, subtask: Optional[Dict[str, Any]] = None) -> MutationResult:
        body = {"action": "subtask", "taskId": task_id, "projectId": project_id, "subtaskAction": subtask_action}
        if subtask_id is not None:
            body["subtaskId"] = subtask_id
        if subtask is not None:
            body["subtask"] = subtask
        return self.post("subtask", "/api/tasks", body)

    def idea(self, action: str, **fields) -> MutationResult:
        return self.post(f"idea.{action}", "/api/ideas", dict(fields, action=action))

    def submit_change_request(self, text: str, request_id: Optional[str] = None,
                              created_at: Optional[str] = None) -> MutationResult:
        return self.post("changeRequest.submit", "/api/change-request",
                         {"text": text, "id": request_id, "createdAt": created_at})

    def cancel_change_request(self, request_id: str) -> MutationResult:
        return self.post("changeRequest.cancel", "/api/change-request", {"action": "cancel", "id": request_id})

    def health(self) -> bool:
        try:
            r = self.session.get(f"{self.base_url}/health", timeout=2)
            return r.ok
        except requests.RequestException:
            return False
