"""
DevFlow storage backend (SQLite).

Provides CRUD operations and queries for every DevFlow record type.
Each call opens its own connection so the store is safe to share between
Flask request threads.
"""
import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .schema import (
    Project,
    Prompt,
    PromptTemplate,
    Review,
    Snippet,
    Task,
    TaskAnalytics,
    TaskStatus,
    UserGoal,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "devflow" / "devflow.db"

# Columns holding JSON-encoded lists/objects
_JSON_COLUMNS = {"tags", "context", "variables", "suggestion_data", "insight_data"}
_BOOL_COLUMNS = {"is_public", "applied"}


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _encode(row: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in row.items():
        if key in _JSON_COLUMNS:
            out[key] = json.dumps(value if value is not None else None)
        elif key in _BOOL_COLUMNS:
            out[key] = 1 if value else 0
        else:
            out[key] = value
    return out


def _decode(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    for key in _JSON_COLUMNS & data.keys():
        if isinstance(data[key], str):
            try:
                data[key] = json.loads(data[key])
            except json.JSONDecodeError:
                data[key] = None
    for key in _BOOL_COLUMNS & data.keys():
        data[key] = bool(data[key])
    return data


def _upsert(conn: sqlite3.Connection, table: str, row: Dict[str, Any]) -> None:
    row = _encode(row)
    cols = list(row)
    updates = ", ".join(f"{c}=excluded.{c}" for c in cols if c != "id")
    conn.execute(
        f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)}) "
        f"ON CONFLICT(id) DO UPDATE SET {updates}",
        [row[c] for c in cols],
    )


class TaskStore:
    """SQLite-backed store for tasks and their satellite records."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(DEFAULT_DB_PATH)
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    repo_url TEXT,
                    status TEXT DEFAULT 'active',
                    user_id TEXT DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    type TEXT DEFAULT 'code',
                    status TEXT DEFAULT 'todo',
                    priority TEXT DEFAULT 'med',
                    due_date TEXT,
                    project_id TEXT,
                    estimated_hours REAL,
                    actual_hours REAL,
                    tags TEXT,  -- JSON list
                    user_id TEXT DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS code_snippets (
                    id TEXT PRIMARY KEY,
                    file_path TEXT NOT NULL,
                    code_text TEXT NOT NULL,
                    commit_sha TEXT,
                    task_id TEXT,
                    user_id TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS prompts (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    prompt_text TEXT NOT NULL,
                    response_text TEXT,
                    task_id TEXT,
                    template_id TEXT,
                    context TEXT,  -- JSON object
                    tokens_used INTEGER DEFAULT 0,
                    model_used TEXT,
                    user_id TEXT DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS prompt_templates (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    template_text TEXT NOT NULL,
                    category TEXT DEFAULT 'general',
                    variables TEXT,  -- JSON list
                    is_public INTEGER DEFAULT 0,
                    usage_count INTEGER DEFAULT 0,
                    user_id TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reviews (
                    id TEXT PRIMARY KEY,
                    pr_url TEXT NOT NULL,
                    notes TEXT DEFAULT '',
                    status TEXT DEFAULT 'open',
                    reviewer TEXT DEFAULT '',
                    task_id TEXT,
                    user_id TEXT DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ai_task_suggestions (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    suggestion_type TEXT NOT NULL,
                    suggestion_data TEXT NOT NULL,  -- JSON object
                    confidence_score REAL,
                    applied INTEGER DEFAULT 0,
                    user_id TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_analytics (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    estimated_hours REAL,
                    actual_hours REAL,
                    completion_date TEXT,
                    efficiency_score REAL,
                    complexity_score INTEGER,
                    user_id TEXT DEFAULT ''
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_goals (
                    id TEXT PRIMARY KEY,
                    goal_type TEXT NOT NULL,
                    target_value REAL NOT NULL,
                    current_value REAL DEFAULT 0,
                    period_start TEXT NOT NULL,
                    period_end TEXT NOT NULL,
                    status TEXT DEFAULT 'active',
                    user_id TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS productivity_insights (
                    id TEXT PRIMARY KEY,
                    insight_type TEXT NOT NULL,
                    insight_data TEXT NOT NULL,  -- JSON object
                    confidence_score REAL,
                    expires_at TEXT,
                    generated_at TEXT NOT NULL,
                    user_id TEXT DEFAULT ''
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_snippets_task ON code_snippets(task_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_prompts_created ON prompts(created_at)")
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_analytics_user_completion
                ON task_analytics(user_id, completion_date)
            """)
            conn.commit()

    # ── Generic helpers ──────────────────────────────────────────────────

    def _save(self, table: str, row: Dict[str, Any]) -> bool:
        try:
            with _connect(self.db_path) as conn:
                _upsert(conn, table, row)
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error saving {table} row {row.get('id')}: {e}")
            return False

    def _get(self, table: str, row_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        sql = f"SELECT * FROM {table} WHERE id = ?"
        params: List[Any] = [row_id]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(sql, params).fetchone()
            return _decode(row) if row else None
        except sqlite3.Error as e:
            logger.error(f"Error retrieving {table} row {row_id}: {e}")
            return None

    def _select(self, sql: str, params: List[Any]) -> List[Dict[str, Any]]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(sql, params).fetchall()
            return [_decode(r) for r in rows]
        except sqlite3.Error as e:
            logger.error(f"Error running query {sql!r}: {e}")
            return []

    def _delete(self, table: str, row_id: str, user_id: Optional[str] = None) -> bool:
        sql = f"DELETE FROM {table} WHERE id = ?"
        params: List[Any] = [row_id]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(sql, params)
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Error deleting {table} row {row_id}: {e}")
            return False

    @staticmethod
    def _where(filters: Dict[str, Any]):
        clauses, params = [], []
        for column, value in filters.items():
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        return (" WHERE " + " AND ".join(clauses)) if clauses else "", params

    # ── Tasks ────────────────────────────────────────────────────────────

    def save_task(self, task: Task) -> bool:
        """Insert or update a task. Row order (rowid) survives updates."""
        return self._save("tasks", task.to_dict())

    def get_task(self, task_id: str, user_id: Optional[str] = None) -> Optional[Task]:
        row = self._get("tasks", task_id, user_id)
        return Task.from_dict(row) if row else None

    def list_tasks(
        self,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        created_since: Optional[datetime] = None,
    ) -> List[Task]:
        """Tasks in insertion order."""
        where, params = self._where({
            "user_id": user_id,
            "project_id": project_id,
            "status": status.value if status else None,
        })
        if created_since is not None:
            where += (" AND " if where else " WHERE ") + "created_at >= ?"
            params.append(created_since.isoformat())
        rows = self._select(f"SELECT * FROM tasks{where} ORDER BY rowid ASC", params)
        return [Task.from_dict(r) for r in rows]

    def delete_task(self, task_id: str, user_id: Optional[str] = None) -> bool:
        """Delete a task, detach its snippets/prompts/reviews, drop its analytics."""
        if self.get_task(task_id, user_id) is None:
            return False
        try:
            with _connect(self.db_path) as conn:
                for table in ("code_snippets", "prompts", "reviews"):
                    conn.execute(f"UPDATE {table} SET task_id = NULL WHERE task_id = ?", (task_id,))
                conn.execute("DELETE FROM ai_task_suggestions WHERE task_id = ?", (task_id,))
                conn.execute("DELETE FROM task_analytics WHERE task_id = ?", (task_id,))
                conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
                conn.commit()
                return True
        except sqlite3.Error as e:
            logger.error(f"Error deleting task {task_id}: {e}")
            return False

    # ── Projects ─────────────────────────────────────────────────────────

    def save_project(self, project: Project) -> bool:
        return self._save("projects", project.to_dict())

    def get_project(self, project_id: str, user_id: Optional[str] = None) -> Optional[Project]:
        row = self._get("projects", project_id, user_id)
        return Project.from_dict(row) if row else None

    def list_projects(self, user_id: Optional[str] = None) -> List[Project]:
        where, params = self._where({"user_id": user_id})
        rows = self._select(f"SELECT * FROM projects{where} ORDER BY updated_at DESC", params)
        return [Project.from_dict(r) for r in rows]

    def delete_project(self, project_id: str, user_id: Optional[str] = None) -> bool:
        """Delete a project; its tasks stay, unassigned."""
        if not self._delete("projects", project_id, user_id):
            return False
        try:
            with _connect(self.db_path) as conn:
                conn.execute("UPDATE tasks SET project_id = NULL WHERE project_id = ?", (project_id,))
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error detaching tasks from project {project_id}: {e}")
        return True

    # ── Snippets ─────────────────────────────────────────────────────────

    def save_snippet(self, snippet: Snippet) -> bool:
        return self._save("code_snippets", snippet.to_dict())

    def get_snippet(self, snippet_id: str, user_id: Optional[str] = None) -> Optional[Snippet]:
        row = self._get("code_snippets", snippet_id, user_id)
        return Snippet.from_dict(row) if row else None

    def list_snippets(self, user_id: Optional[str] = None, task_id: Optional[str] = None) -> List[Snippet]:
        """Snippets, newest first."""
        where, params = self._where({"user_id": user_id, "task_id": task_id})
        rows = self._select(f"SELECT * FROM code_snippets{where} ORDER BY created_at DESC", params)
        return [Snippet.from_dict(r) for r in rows]

    def delete_snippet(self, snippet_id: str, user_id: Optional[str] = None) -> bool:
        return self._delete("code_snippets", snippet_id, user_id)

    # ── Prompts & templates ──────────────────────────────────────────────

    def save_prompt(self, prompt: Prompt) -> bool:
        return self._save("prompts", prompt.to_dict())

    def get_prompt(self, prompt_id: str, user_id: Optional[str] = None) -> Optional[Prompt]:
        row = self._get("prompts", prompt_id, user_id)
        return Prompt.from_dict(row) if row else None

    def list_prompts(self, user_id: Optional[str] = None, task_id: Optional[str] = None) -> List[Prompt]:
        where, params = self._where({"user_id": user_id, "task_id": task_id})
        rows = self._select(f"SELECT * FROM prompts{where} ORDER BY created_at DESC", params)
        return [Prompt.from_dict(r) for r in rows]

    def delete_prompt(self, prompt_id: str, user_id: Optional[str] = None) -> bool:
        return self._delete("prompts", prompt_id, user_id)

    def save_template(self, template: PromptTemplate) -> bool:
        return self._save("prompt_templates", template.to_dict())

    def get_template(self, template_id: str, user_id: Optional[str] = None) -> Optional[PromptTemplate]:
        """A template the user owns or that is public; any template if user_id is None."""
        if user_id is None:
            row = self._get("prompt_templates", template_id)
        else:
            rows = self._select(
                "SELECT * FROM prompt_templates WHERE id = ? AND (user_id = ? OR is_public = 1)",
                [template_id, user_id],
            )
            row = rows[0] if rows else None
        return PromptTemplate.from_dict(row) if row else None

    def list_templates(self, user_id: Optional[str] = None) -> List[PromptTemplate]:
        """User's own templates plus public ones, most used first."""
        if user_id is None:
            rows = self._select("SELECT * FROM prompt_templates ORDER BY usage_count DESC", [])
        else:
            rows = self._select(
                "SELECT * FROM prompt_templates WHERE user_id = ? OR is_public = 1 "
                "ORDER BY usage_count DESC",
                [user_id],
            )
        return [PromptTemplate.from_dict(r) for r in rows]

    def increment_template_usage(self, template_id: str, user_id: Optional[str] = None) -> Optional[int]:
        """Bump usage_count; returns the new count, or None if missing or not visible to user_id."""
        sql = "UPDATE prompt_templates SET usage_count = COALESCE(usage_count, 0) + 1 WHERE id = ?"
        params: List[Any] = [template_id]
        if user_id is not None:
            sql += " AND (user_id = ? OR is_public = 1)"
            params.append(user_id)
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(sql, params)
                if cur.rowcount == 0:
                    return None
                row = conn.execute(
                    "SELECT usage_count FROM prompt_templates WHERE id = ?", (template_id,)
                ).fetchone()
                conn.commit()
                return row[0]
        except sqlite3.Error as e:
            logger.error(f"Error updating template usage {template_id}: {e}")
            return None

    def delete_template(self, template_id: str, user_id: Optional[str] = None) -> bool:
        return self._delete("prompt_templates", template_id, user_id)

    # ── Reviews ──────────────────────────────────────────────────────────

    def save_review(self, review: Review) -> bool:
        return self._save("reviews", review.to_dict())

    def get_review(self, review_id: str, user_id: Optional[str] = None) -> Optional[Review]:
        row = self._get("reviews", review_id, user_id)
        return Review.from_dict(row) if row else None

    def list_reviews(self, user_id: Optional[str] = None, task_id: Optional[str] = None) -> List[Review]:
        where, params = self._where({"user_id": user_id, "task_id": task_id})
        rows = self._select(f"SELECT * FROM reviews{where} ORDER BY updated_at DESC", params)
        return [Review.from_dict(r) for r in rows]

    def delete_review(self, review_id: str, user_id: Optional[str] = None) -> bool:
        return self._delete("reviews", review_id, user_id)

    # ── AI suggestions & insights ────────────────────────────────────────

    def save_suggestion(
        self,
        task_id: str,
        suggestion_type: str,
        suggestion_data: Dict[str, Any],
        confidence_score: float,
        user_id: str = "",
    ) -> Optional[str]:
        """Persist one task-assistant suggestion; returns its id."""
        suggestion_id = new_id()
        ok = self._save("ai_task_suggestions", {
            "id": suggestion_id,
            "task_id": task_id,
            "suggestion_type": suggestion_type,
            "suggestion_data": suggestion_data,
            "confidence_score": confidence_score,
            "applied": False,
            "user_id": user_id,
            "created_at": utc_now().isoformat(),
        })
        return suggestion_id if ok else None

    def list_suggestions(self, task_id: str) -> List[Dict[str, Any]]:
        return self._select(
            "SELECT * FROM ai_task_suggestions WHERE task_id = ? ORDER BY created_at DESC",
            [task_id],
        )

    def save_insight(
        self,
        insight_type: str,
        insight_data: Dict[str, Any],
        confidence_score: float,
        expires_at: datetime,
        user_id: str = "",
    ) -> Optional[str]:
        insight_id = new_id()
        ok = self._save("productivity_insights", {
            "id": insight_id,
            "insight_type": insight_type,
            "insight_data": insight_data,
            "confidence_score": confidence_score,
            "expires_at": expires_at.isoformat(),
            "generated_at": utc_now().isoformat(),
            "user_id": user_id,
        })
        return insight_id if ok else None

    def list_insights(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        where, params = self._where({"user_id": user_id})
        return self._select(f"SELECT * FROM productivity_insights{where} ORDER BY generated_at DESC", params)

    # ── Analytics & goals ────────────────────────────────────────────────

    def save_analytics(self, record: TaskAnalytics) -> bool:
        return self._save("task_analytics", record.to_dict())

    def list_analytics(
        self,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        newest_first: bool = True,
    ) -> List[TaskAnalytics]:
        where, params = self._where({"user_id": user_id})
        if since is not None:
            where += (" AND " if where else " WHERE ") + "completion_date >= ?"
            params.append(since.isoformat())
        if until is not None:
            where += (" AND " if where else " WHERE ") + "completion_date <= ?"
            params.append(until.isoformat())
        sql = f"SELECT * FROM task_analytics{where} ORDER BY completion_date {'DESC' if newest_first else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [TaskAnalytics.from_dict(r) for r in self._select(sql, params)]

    def save_goal(self, goal: UserGoal) -> bool:
        return self._save("user_goals", goal.to_dict())

    def list_goals(self, user_id: Optional[str] = None, status: Optional[str] = "active") -> List[UserGoal]:
        where, params = self._where({"user_id": user_id, "status": status})
        rows = self._select(f"SELECT * FROM user_goals{where} ORDER BY created_at DESC", params)
        return [UserGoal.from_dict(r) for r in rows]
