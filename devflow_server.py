#!/usr/bin/env python3
"""
DevFlow Server
--------------
JSON API over the DevFlow store: the kanban board, tasks, projects,
snippets, prompts, templates, reviews, analytics, AI helpers and GitHub
import.

Usage:
    python devflow_server.py --port 3000
    DEVFLOW_DB=/tmp/devflow.db DEVFLOW_API_SECRET=s3cret python devflow_server.py

Auth:
    Read routes are open. Mutating routes and AI routes require an
    X-API-Key header equal to DEVFLOW_API_SECRET. X-User-Id selects the
    user (defaults to the configured default_user).

API (abridged):
    GET  /api/board                  → columns in board order with counts
    POST /api/board/drop             → { task_id, over_id } resolve a drag
    POST /api/tasks/<id>/status      → { status }
    GET  /api/tasks?search=&status=&type=&priority=&tag=&sort_by=&sort_order=
    POST /api/ai/chat | task-assistant | estimate | insights
    POST /api/github/import          → { repo_url, token?, save_snippets? }
"""

import hmac
import logging
import os
import sys
from functools import wraps

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from devflow.analytics import create_goal, record_completion
from devflow.assistant import Assistant, variant_to_dict
from devflow.board import KanbanBoard
from devflow.config import Config
from devflow.filters import SnippetFilter, TaskFilter, all_tags, sort_snippets, sort_tasks, today_tasks
from devflow.github_import import GitHubImportError, GitHubImporter, save_as_snippets
from devflow.llm import ChatClient, LLMError
from devflow.reducer import TaskBoardController
from devflow.schema import (
    DEFAULT_COLUMNS,
    NotFoundError,
    Priority,
    Project,
    PromptTemplate,
    Review,
    Snippet,
    Task,
    TaskStatus,
    TaskType,
    ValidationError,
    parse_datetime,
    utc_now,
)
from devflow.store import TaskStore

logger = logging.getLogger("devflow.server")

app = Flask(__name__)


# ── Config & wiring ──────────────────────────────────────────────────────────

def get_config() -> Config:
    return Config.load()


def get_store() -> TaskStore:
    return TaskStore(get_config().db_path)


def get_chat_client() -> ChatClient:
    return ChatClient.from_config(get_config())


def get_assistant() -> Assistant:
    cfg = get_config()
    return Assistant(get_store(), get_chat_client(), insight_ttl_days=cfg.insight_ttl_days)


def current_user() -> str:
    return request.headers.get("X-User-Id", "").strip() or get_config().default_user


def body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


# ── Auth ─────────────────────────────────────────────────────────────────────

def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = get_config().api_secret
        if not secret:
            return jsonify({"error": "API_SECRET not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


# ── Error mapping ────────────────────────────────────────────────────────────

@app.errorhandler(ValidationError)
def handle_validation(e):
    return jsonify({"error": str(e)}), 400


@app.errorhandler(NotFoundError)
def handle_not_found(e):
    return jsonify({"error": str(e)}), 404


@app.errorhandler(LLMError)
def handle_llm(e):
    logger.error(f"LLM call failed: {e}")
    return jsonify({"error": str(e)}), 502


@app.errorhandler(GitHubImportError)
def handle_github(e):
    code = e.status if e.status in (401, 403, 404) else 502
    if not e.status and str(e) == "Invalid GitHub URL":
        code = 400
    return jsonify({"error": str(e)}), code


@app.errorhandler(Exception)
def handle_unexpected(e):
    if isinstance(e, HTTPException):
        return e
    logger.exception(f"Unhandled error on {request.path}")
    return jsonify({"error": str(e)}), 500


def _columns_from_args():
    """Optional ?columns=todo,doing,done picks a subset, in the given order."""
    raw = request.args.get("columns")
    if not raw:
        return DEFAULT_COLUMNS
    by_value = {c.value.value: c for c in DEFAULT_COLUMNS}
    wanted = [v.strip() for v in raw.split(",") if v.strip()]
    unknown = [v for v in wanted if v not in by_value]
    if unknown:
        raise ValidationError(f"Unknown columns: {', '.join(unknown)}")
    return [by_value[v] for v in wanted]


def _task_or_404(store: TaskStore, task_id: str) -> Task:
    task = store.get_task(task_id, current_user())
    if task is None:
        raise NotFoundError("Task not found")
    return task


# ── Board ────────────────────────────────────────────────────────────────────

@app.route("/api/board")
def api_board():
    store = get_store()
    tasks = store.list_tasks(user_id=current_user(), project_id=request.args.get("project_id"))
    board = KanbanBoard(tasks, _columns_from_args(), activation_distance=get_config().drag_activation_distance)
    columns = board.render()
    return jsonify({
        "columns": [c.to_dict() for c in columns],
        "stats": {
            "total": len(tasks),
            "by_status": {c.status.value: c.count for c in columns},
        },
    })


@app.route("/api/board/drop", methods=["POST"])
@require_api_key
def api_board_drop():
    """Resolve a finished drag: task `task_id` released over `over_id`."""
    data = body()
    task_id = data.get("task_id")
    if not task_id:
        raise ValidationError("task_id is required")

    controller = TaskBoardController(get_store())
    controller.load(user_id=current_user())
    persisted = []

    def on_change(changed_id, new_status):
        persisted.append(controller.change_status(changed_id, new_status))

    if not any(t.id == task_id for t in controller.tasks):
        raise NotFoundError("Task not found")
    board = KanbanBoard(
        controller.tasks,
        on_task_status_change=on_change,
        activation_distance=get_config().drag_activation_distance,
    )

    target = board.drop(task_id, data.get("over_id"))
    if target is None:
        return jsonify({"changed": False, "status": None})
    if not persisted or persisted[0] is None:
        return jsonify({"error": "Status change not persisted"}), 500
    return jsonify({"changed": True, "status": target.value, "task": persisted[0].to_dict()})


# ── Tasks ────────────────────────────────────────────────────────────────────

@app.route("/api/tasks", methods=["GET"])
def api_tasks():
    args = request.args
    tasks = get_store().list_tasks(user_id=current_user(), project_id=args.get("project_id"))
    f = TaskFilter(
        search=args.get("search", ""),
        status=TaskStatus.parse(args["status"]) if args.get("status") else None,
        type=TaskType.parse(args["type"]) if args.get("type") else None,
        priority=Priority.parse(args["priority"]) if args.get("priority") else None,
        tags=args.getlist("tag"),
    )
    result = f.apply(tasks)
    if args.get("sort_by"):
        result = sort_tasks(result, args["sort_by"], args.get("sort_order", "desc"))
    return jsonify({
        "tasks": [t.to_dict() for t in result],
        "count": len(result),
        "tags": all_tags(tasks),
        "active_filters": f.active_count,
    })


@app.route("/api/tasks/today")
def api_tasks_today():
    tasks = today_tasks(get_store().list_tasks(user_id=current_user()))
    return jsonify({"tasks": [t.to_dict() for t in tasks], "count": len(tasks)})


@app.route("/api/tasks", methods=["POST"])
@require_api_key
def api_create_task():
    data = body()
    data["user_id"] = current_user()
    data.pop("id", None)
    task = Task.from_dict(data)
    if not get_store().save_task(task):
        return jsonify({"error": "Failed to save task"}), 500
    return jsonify({"task": task.to_dict(), "id": task.id}), 201


@app.route("/api/tasks/<task_id>", methods=["GET"])
def api_get_task(task_id):
    return jsonify({"task": _task_or_404(get_store(), task_id).to_dict()})


@app.route("/api/tasks/<task_id>", methods=["PUT"])
@require_api_key
def api_update_task(task_id):
    store = get_store()
    merged = _task_or_404(store, task_id).to_dict()
    editable = ("title", "description", "type", "status", "priority", "due_date",
                "project_id", "estimated_hours", "actual_hours", "tags")
    merged.update({k: v for k, v in body().items() if k in editable})
    merged["updated_at"] = utc_now().isoformat()
    task = Task.from_dict(merged)
    if not store.save_task(task):
        return jsonify({"error": "Failed to save task"}), 500
    return jsonify({"task": task.to_dict()})


@app.route("/api/tasks/<task_id>", methods=["DELETE"])
@require_api_key
def api_delete_task(task_id):
    if not get_store().delete_task(task_id, current_user()):
        raise NotFoundError("Task not found")
    return jsonify({"deleted": task_id})


@app.route("/api/tasks/<task_id>/status", methods=["POST"])
@require_api_key
def api_task_status(task_id):
    new_status = TaskStatus.parse(body().get("status", ""))
    store = get_store()
    task = _task_or_404(store, task_id)
    if task.status == new_status:
        return jsonify({"changed": False, "task": task.to_dict()})
    controller = TaskBoardController(store, [task])
    changed = controller.change_status(task_id, new_status)
    if changed is None:
        return jsonify({"error": "Status change not persisted"}), 500
    return jsonify({"changed": True, "task": changed.to_dict()})


# ── Projects ─────────────────────────────────────────────────────────────────

@app.route("/api/projects", methods=["GET"])
def api_projects():
    store = get_store()
    user = current_user()
    tasks = store.list_tasks(user_id=user)
    projects = []
    for p in store.list_projects(user_id=user):
        d = p.to_dict()
        d["task_count"] = sum(1 for t in tasks if t.project_id == p.id)
        projects.append(d)
    return jsonify({"projects": projects, "count": len(projects)})


@app.route("/api/projects", methods=["POST"])
@require_api_key
def api_create_project():
    data = body()
    data["user_id"] = current_user()
    data.pop("id", None)
    project = Project.from_dict(data)
    if not get_store().save_project(project):
        return jsonify({"error": "Failed to save project"}), 500
    return jsonify({"project": project.to_dict()}), 201


@app.route("/api/projects/<project_id>", methods=["PUT"])
@require_api_key
def api_update_project(project_id):
    store = get_store()
    project = store.get_project(project_id, current_user())
    if project is None:
        raise NotFoundError("Project not found")
    merged = project.to_dict()
    merged.update({k: v for k, v in body().items() if k in ("name", "description", "repo_url", "status")})
    merged["updated_at"] = utc_now().isoformat()
    project = Project.from_dict(merged)
    if not store.save_project(project):
        return jsonify({"error": "Failed to save project"}), 500
    return jsonify({"project": project.to_dict()})


@app.route("/api/projects/<project_id>", methods=["DELETE"])
@require_api_key
def api_delete_project(project_id):
    if not get_store().delete_project(project_id, current_user()):
        raise NotFoundError("Project not found")
    return jsonify({"deleted": project_id})


# ── Snippets ─────────────────────────────────────────────────────────────────

@app.route("/api/snippets", methods=["GET"])
def api_snippets():
    args = request.args
    snippets = get_store().list_snippets(user_id=current_user())
    f = SnippetFilter(
        search=args.get("search", ""),
        language=args.get("language") or None,
        task_id=args.get("task_id") or None,
        date_from=parse_datetime(args.get("date_from")),
        date_to=parse_datetime(args.get("date_to")),
    )
    result = sort_snippets(f.apply(snippets), args.get("sort_by", "created_at"), args.get("sort_order", "desc"))
    return jsonify({"snippets": [s.to_dict() for s in result], "count": len(result)})


@app.route("/api/snippets", methods=["POST"])
@require_api_key
def api_create_snippet():
    data = body()
    data["user_id"] = current_user()
    data.pop("id", None)
    snippet = Snippet.from_dict(data)
    if not get_store().save_snippet(snippet):
        return jsonify({"error": "Failed to save snippet"}), 500
    return jsonify({"snippet": snippet.to_dict()}), 201


@app.route("/api/snippets/<snippet_id>", methods=["PUT"])
@require_api_key
def api_update_snippet(snippet_id):
    store = get_store()
    snippet = store.get_snippet(snippet_id, current_user())
    if snippet is None:
        raise NotFoundError("Snippet not found")
    merged = snippet.to_dict()
    merged.update({k: v for k, v in body().items() if k in ("file_path", "code_text", "commit_sha", "task_id")})
    snippet = Snippet.from_dict(merged)
    if not store.save_snippet(snippet):
        return jsonify({"error": "Failed to save snippet"}), 500
    return jsonify({"snippet": snippet.to_dict()})


@app.route("/api/snippets/<snippet_id>", methods=["DELETE"])
@require_api_key
def api_delete_snippet(snippet_id):
    if not get_store().delete_snippet(snippet_id, current_user()):
        raise NotFoundError("Snippet not found")
    return jsonify({"deleted": snippet_id})


# ── Prompts & templates ──────────────────────────────────────────────────────

@app.route("/api/prompts", methods=["GET"])
def api_prompts():
    prompts = get_store().list_prompts(user_id=current_user(), task_id=request.args.get("task_id"))
    return jsonify({"prompts": [p.to_dict() for p in prompts], "count": len(prompts)})


@app.route("/api/prompts/<prompt_id>", methods=["DELETE"])
@require_api_key
def api_delete_prompt(prompt_id):
    if not get_store().delete_prompt(prompt_id, current_user()):
        raise NotFoundError("Prompt not found")
    return jsonify({"deleted": prompt_id})


@app.route("/api/templates", methods=["GET"])
def api_templates():
    templates = get_store().list_templates(user_id=current_user())
    return jsonify({"templates": [t.to_dict() for t in templates]})


@app.route("/api/templates", methods=["POST"])
@require_api_key
def api_create_template():
    data = body()
    data["user_id"] = current_user()
    data.pop("id", None)
    data.pop("usage_count", None)
    data.pop("variables", None)
    template = PromptTemplate.from_dict(data)
    if not get_store().save_template(template):
        return jsonify({"error": "Failed to save template"}), 500
    return jsonify({"template": template.to_dict()}), 201


@app.route("/api/templates/<template_id>/use", methods=["POST"])
@require_api_key
def api_use_template(template_id):
    count = get_store().increment_template_usage(template_id, current_user())
    if count is None:
        raise NotFoundError("Template not found")
    return jsonify({"id": template_id, "usage_count": count})


@app.route("/api/templates/<template_id>/render", methods=["POST"])
def api_render_template(template_id):
    template = get_store().get_template(template_id, current_user())
    if template is None:
        raise NotFoundError("Template not found")
    values = body().get("values") or {}
    if not isinstance(values, dict):
        raise ValidationError("values must be an object")
    missing = [v for v in template.variables if v not in values]
    return jsonify({"text": template.render(values), "missing": missing})


# ── Reviews ──────────────────────────────────────────────────────────────────

@app.route("/api/reviews", methods=["GET"])
def api_reviews():
    reviews = get_store().list_reviews(user_id=current_user(), task_id=request.args.get("task_id"))
    status = request.args.get("status")
    if status:
        reviews = [r for r in reviews if r.status.value == status]
    return jsonify({"reviews": [r.to_dict() for r in reviews], "count": len(reviews)})


@app.route("/api/reviews", methods=["POST"])
@require_api_key
def api_create_review():
    data = body()
    data["user_id"] = current_user()
    data.pop("id", None)
    review = Review.from_dict(data)
    if not get_store().save_review(review):
        return jsonify({"error": "Failed to save review"}), 500
    return jsonify({"review": review.to_dict()}), 201


@app.route("/api/reviews/<review_id>", methods=["PUT"])
@require_api_key
def api_update_review(review_id):
    store = get_store()
    review = store.get_review(review_id, current_user())
    if review is None:
        raise NotFoundError("Review not found")
    merged = review.to_dict()
    merged.update({k: v for k, v in body().items() if k in ("pr_url", "notes", "status", "reviewer", "task_id")})
    merged["updated_at"] = utc_now().isoformat()
    review = Review.from_dict(merged)
    if not store.save_review(review):
        return jsonify({"error": "Failed to save review"}), 500
    return jsonify({"review": review.to_dict()})


@app.route("/api/reviews/<review_id>", methods=["DELETE"])
@require_api_key
def api_delete_review(review_id):
    if not get_store().delete_review(review_id, current_user()):
        raise NotFoundError("Review not found")
    return jsonify({"deleted": review_id})


# ── AI ───────────────────────────────────────────────────────────────────────

@app.route("/api/ai/chat", methods=["POST"])
@require_api_key
def api_ai_chat():
    data = body()
    result = get_assistant().chat(
        prompt=data.get("prompt", ""),
        user_id=current_user(),
        task_id=data.get("task_id"),
        template_id=data.get("template_id"),
        context=data.get("context"),
    )
    return jsonify(result.to_dict())


@app.route("/api/ai/task-assistant", methods=["POST"])
@require_api_key
def api_ai_task_assistant():
    data = body()
    result = get_assistant().suggest(data.get("task_id", ""), current_user(), data.get("suggestion_type", ""))
    result["suggestion"] = variant_to_dict(result["suggestion"])
    return jsonify(result)


@app.route("/api/ai/estimate", methods=["POST"])
@require_api_key
def api_ai_estimate():
    data = body()
    result = get_assistant().estimate(data.get("task_data") or {}, current_user(), data.get("estimation_type", ""))
    result["estimation"] = variant_to_dict(result["estimation"])
    return jsonify(result)


@app.route("/api/ai/insights", methods=["POST"])
@require_api_key
def api_ai_insights():
    data = body()
    result = get_assistant().insights(current_user(), data.get("time_range", "30_days"))
    return jsonify({
        "metrics": result["metrics"].to_dict(),
        "insights": result["insights"].to_dict(),
        "generated_at": result["generated_at"],
    })


# ── Analytics & goals ────────────────────────────────────────────────────────

@app.route("/api/analytics", methods=["GET"])
def api_analytics():
    records = get_store().list_analytics(user_id=current_user())
    return jsonify({"analytics": [a.to_dict() for a in records], "count": len(records)})


@app.route("/api/analytics/completion", methods=["POST"])
@require_api_key
def api_record_completion():
    data = body()
    store = get_store()
    task = _task_or_404(store, data.get("task_id", ""))
    record = record_completion(
        store,
        task.id,
        actual_hours=data.get("actual_hours"),
        estimated_hours=data.get("estimated_hours", task.estimated_hours),
        user_id=current_user(),
    )
    if record is None:
        return jsonify({"error": "Failed to record completion"}), 500
    return jsonify({"analytics": record.to_dict()}), 201


@app.route("/api/goals", methods=["GET"])
def api_goals():
    goals = get_store().list_goals(user_id=current_user(), status=request.args.get("status", "active"))
    return jsonify({"goals": [g.to_dict() for g in goals]})


@app.route("/api/goals", methods=["POST"])
@require_api_key
def api_create_goal():
    data = body()
    goal = create_goal(
        get_store(),
        goal_type=data.get("goal_type", ""),
        target_value=data.get("target_value"),
        period_days=data.get("period_days", 7),
        user_id=current_user(),
    )
    if goal is None:
        return jsonify({"error": "Failed to create goal"}), 500
    return jsonify({"goal": goal.to_dict()}), 201


# ── GitHub import ────────────────────────────────────────────────────────────

@app.route("/api/github/import", methods=["POST"])
@require_api_key
def api_github_import():
    data = body()
    cfg = get_config()
    importer = GitHubImporter(
        token=data.get("token") or cfg.github_token or None,
        api_url=cfg.github_api_url,
        timeout=cfg.github_timeout_secs,
        max_file_bytes=cfg.github_max_file_bytes,
    )
    result = importer.import_repo(data.get("repo_url", ""))
    saved = []
    if data.get("save_snippets"):
        saved = save_as_snippets(get_store(), result["files"], user_id=current_user(), task_id=data.get("task_id"))
    result["saved_snippets"] = len(saved)
    return jsonify(result)


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": get_config().db_path})


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="DevFlow Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--db", help="Path to devflow.db (overrides DEVFLOW_DB env var)")
    parser.add_argument("--config", help="Path to devflow.yaml (overrides DEVFLOW_CONFIG env var)")
    args = parser.parse_args(argv)

    if args.db:
        os.environ["DEVFLOW_DB"] = args.db
    if args.config:
        os.environ["DEVFLOW_CONFIG"] = args.config

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [devflow] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    cfg = get_config()
    TaskStore(cfg.db_path)
    if not cfg.api_secret:
        logger.warning("DEVFLOW_API_SECRET is not set; mutating routes will return 503")
    if not cfg.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; AI routes will fail")

    print(f"""
╔═══════════════════════════════════════╗
║  DevFlow Server                       ║
╠═══════════════════════════════════════╣
║  URL:  http://{args.host}:{args.port:<20}║
║  DB:   {cfg.db_path:<31}║
╚═══════════════════════════════════════╝
""")

    app.run(host=args.host, port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
