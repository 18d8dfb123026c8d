#!/usr/bin/env python3
"""
Status Board Server
-------------------
JSON API over the shared status document (status.json). Every mutation is a
read → modify → write cycle against the document store, retried when another
writer got there first.

Usage:
    export GITHUB_TOKEN=...            # or STATUSBOARD_DOCUMENT_FILE=/path/status.json
    python board_server.py --port 3000

API:
    GET  /api/status          → the full document (never cached)
    POST /api/tasks           → { action: add|move|complete|edit|subtask, ... }
    POST /api/ideas           → { action: add|delete|edit, ... }
    POST /api/change-request  → { text } or { action: "cancel", id }
    GET  /health              → { status, store }

Failures are JSON: { error, detail? } with the matching HTTP status.
"""

import hmac
import logging
import sys
from functools import wraps

from flask import Flask, jsonify, request

from statusboard.config import Config
from statusboard.document_store import store_from_config
from statusboard.errors import BoardError, InvalidRequest, Misconfiguration
from statusboard.mutator import DocumentMutator
from statusboard.notify import HookNotifier

app = Flask(__name__)
app.config["BOARD_CONFIG"] = Config.load()
# Tests (and embedders) may put a ready store here instead of configuring GitHub
app.config.setdefault("DOCUMENT_STORE", None)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-API-Key",
}


def _config() -> Config:
    return app.config["BOARD_CONFIG"]


# ── Auth ─────────────────────────────────────────────────────────────────────


def require_api_key(f):
    """Decorator: when an API secret is configured, reject requests without a matching X-API-Key."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = _config().api_secret
        if not secret or request.method == "OPTIONS":
            return f(*args, **kwargs)
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


def json_errors(f):
    """Decorator: BoardError → its status with {error, detail}; anything else → 500."""
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except BoardError as e:
            if e.status >= 500:
                app.logger.error(f"{request.path}: {e.message} {e.detail or ''}")
            return jsonify(e.to_dict()), e.status
        except Exception as e:
            app.logger.exception(f"{request.path}: unhandled error")
            return jsonify({"error": "Internal error", "detail": str(e)}), 500
    return decorated


@app.after_request
def add_cors_headers(response):
    response.headers.update(CORS_HEADERS)
    return response


# ── Wiring ───────────────────────────────────────────────────────────────────


def get_store():
    store = app.config.get("DOCUMENT_STORE")
    if store is not None:
        return store
    return store_from_config(_config())


def get_mutator() -> DocumentMutator:
    cfg = _config()
    return DocumentMutator(
        get_store(),
        max_attempts=cfg.commit_attempts,
        notifier=HookNotifier.from_config(cfg),
    )


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return data


# ── Routes ───────────────────────────────────────────────────────────────────


@app.route("/api/status", methods=["GET", "OPTIONS"])
@json_errors
def api_status():
    if request.method == "OPTIONS":
        return "", 204
    content, _ = get_store().read()
    response = jsonify(content)
    response.headers["Cache-Control"] = "no-cache, no-store"
    return response


@app.route("/api/tasks", methods=["POST", "OPTIONS"])
@require_api_key
@json_errors
def api_tasks():
    if request.method == "OPTIONS":
        return "", 204
    data = _body()
    action = data.get("action")
    task_id = data.get("taskId")
    project_id = data.get("projectId")
    mutator = get_mutator()

    if action == "add":
        task = mutator.add_task(data.get("task"), project_id, data.get("column"))
        return jsonify({"ok": True, "task": task}), 201

    if action == "move":
        result = mutator.move_task(task_id, project_id, data.get("targetColumn"))
        return jsonify(dict(result, ok=True))

    if action == "complete":
        completed = data.get("completed", True)
        if not isinstance(completed, bool):
            raise InvalidRequest("completed must be true or false")
        result = mutator.set_completion(task_id, project_id, completed)
        return jsonify(dict(result, ok=True))

    if action == "edit":
        task = mutator.edit_task(task_id, project_id, data.get("updates"))
        return jsonify({"ok": True, "task": task})

    if action == "subtask":
        result = mutator.mutate_subtask(
            task_id, project_id, data.get("subtaskAction"),
            subtask_id=data.get("subtaskId"), subtask=data.get("subtask"),
        )
        return jsonify(dict(result, ok=True))

    raise InvalidRequest(f"Unknown action: {action}", "Allowed: add, move, complete, edit, subtask")


@app.route("/api/ideas", methods=["POST", "OPTIONS"])
@require_api_key
@json_errors
def api_ideas():
    if request.method == "OPTIONS":
        return "", 204
    data = _body()
    action = data.get("action", "add")
    mutator = get_mutator()

    if action == "add":
        idea = mutator.add_idea(
            data.get("title"), data.get("idea"), data.get("tags"),
            idea_id=data.get("id"), created_at=data.get("createdAt"),
        )
        return jsonify({"ok": True, "idea": idea}), 201

    if action == "delete":
        mutator.delete_idea(data.get("id"))
        return jsonify({"ok": True})

    if action == "edit":
        idea = mutator.edit_idea(data.get("id"), data.get("title"), data.get("idea"), data.get("tags"))
        return jsonify({"ok": True, "idea": idea})

    raise InvalidRequest(f"Unknown action: {action}", "Allowed: add, delete, edit")


@app.route("/api/change-request", methods=["POST", "OPTIONS"])
@require_api_key
@json_errors
def api_change_request():
    if request.method == "OPTIONS":
        return "", 204
    data = _body()
    mutator = get_mutator()

    if data.get("action") == "cancel":
        mutator.cancel_change_request(data.get("id"))
        return jsonify({"ok": True})

    request_id = mutator.submit_change_request(
        data.get("text"), request_id=data.get("id"), created_at=data.get("createdAt"),
    )
    return jsonify({"ok": True, "id": request_id}), 201


@app.route("/health")
def health():
    try:
        store = get_store()
    except Misconfiguration as e:
        return jsonify({"status": "misconfigured", "store": None, "detail": e.message}), 503
    return jsonify({"status": "ok", "store": store.describe()})


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Status Board Server")
    parser.add_argument("--config", help="Path to statusboard.yaml (overrides STATUSBOARD_CONFIG)")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--document-file", help="Serve a local status.json instead of GitHub")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [board-server] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    cfg = Config.load(args.config) if args.config else _config()
    if args.host:
        cfg.host = args.host
    if args.port:
        cfg.port = args.port
    if args.document_file:
        cfg.document_file = args.document_file
        cfg.resolve_paths()
    app.config["BOARD_CONFIG"] = cfg

    try:
        store_label = get_store().describe()
    except Misconfiguration as e:
        store_label = f"NOT CONFIGURED ({e.message})"

    print(f"""
╔═══════════════════════════════════════╗
║  Status Board Server                  ║
╠═══════════════════════════════════════╣
║  URL:   http://{cfg.host}:{cfg.port:<19}║
║  Store: {store_label:<30}║
╚═══════════════════════════════════════╝
""")

    app.run(host=cfg.host, port=cfg.port, debug=False, threaded=True)
