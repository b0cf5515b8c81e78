"""
In-memory filtering and sorting for task and snippet lists.

Everything here is a pure function over lists already loaded from the
store; the server applies them after the query, as the board does.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Sequence

from .schema import Priority, Snippet, Task, TaskStatus, TaskType, ValidationError

# Extension → display language for snippets
LANGUAGE_MAP = {
    "js": "JavaScript",
    "ts": "TypeScript",
    "tsx": "TypeScript React",
    "jsx": "JavaScript React",
    "py": "Python",
    "java": "Java",
    "cpp": "C++",
    "c": "C",
    "cs": "C#",
    "php": "PHP",
    "rb": "Ruby",
    "go": "Go",
    "rs": "Rust",
    "kt": "Kotlin",
    "swift": "Swift",
    "css": "CSS",
    "scss": "SCSS",
    "html": "HTML",
    "xml": "XML",
    "json": "JSON",
    "yml": "YAML",
    "yaml": "YAML",
    "md": "Markdown",
    "sql": "SQL",
    "sh": "Shell",
    "bash": "Bash",
}

TASK_SORT_FIELDS = ("created_at", "updated_at", "due_date", "priority", "title")
SNIPPET_SORT_FIELDS = ("created_at", "file_path", "language")


def language_from_path(file_path: str) -> str:
    """Display language for a file, "Text" when unknown."""
    name = file_path.rsplit("/", 1)[-1]
    if "." not in name:
        return "Text"
    return LANGUAGE_MAP.get(name.rsplit(".", 1)[-1].lower(), "Text")


def _check_order(order: str) -> bool:
    if order not in ("asc", "desc"):
        raise ValidationError(f"sort order must be 'asc' or 'desc', got {order!r}")
    return order == "desc"


@dataclass
class TaskFilter:
    """Active filters on the task list. Empty fields are ignored."""
    search: str = ""
    status: Optional[TaskStatus] = None
    type: Optional[TaskType] = None
    priority: Optional[Priority] = None
    tags: List[str] = field(default_factory=list)

    @property
    def active_count(self) -> int:
        return sum(1 for v in (self.status, self.type, self.priority, self.tags, self.search) if v)

    def matches(self, task: Task) -> bool:
        if self.search:
            needle = self.search.lower()
            haystack = [task.title, task.description or ""] + list(task.tags)
            if not any(needle in h.lower() for h in haystack):
                return False
        if self.status is not None and task.status != self.status:
            return False
        if self.type is not None and task.type != self.type:
            return False
        if self.priority is not None and task.priority != self.priority:
            return False
        if self.tags and not set(self.tags) & set(task.tags):
            return False
        return True

    def apply(self, tasks: Iterable[Task]) -> List[Task]:
        return [t for t in tasks if self.matches(t)]


def sort_tasks(tasks: Sequence[Task], sort_by: str = "created_at", order: str = "desc") -> List[Task]:
    """Stable sort; tasks without a due date always come last."""
    if sort_by not in TASK_SORT_FIELDS:
        raise ValidationError(f"cannot sort tasks by {sort_by!r}")
    reverse = _check_order(order)

    if sort_by == "due_date":
        dated = [t for t in tasks if t.due_date is not None]
        undated = [t for t in tasks if t.due_date is None]
        return sorted(dated, key=lambda t: t.due_date, reverse=reverse) + undated
    if sort_by == "priority":
        key = lambda t: t.priority.rank
    elif sort_by == "title":
        key = lambda t: t.title.lower()
    else:
        key = lambda t: getattr(t, sort_by)
    return sorted(tasks, key=key, reverse=reverse)


def all_tags(tasks: Iterable[Task]) -> List[str]:
    """Distinct tags across tasks, first-seen order."""
    seen: List[str] = []
    for task in tasks:
        for tag in task.tags:
            if tag not in seen:
                seen.append(tag)
    return seen


def today_tasks(tasks: Iterable[Task], today: Optional[date] = None) -> List[Task]:
    """Tasks due today, plus undated tasks still in To Do / In Progress."""
    today = today or datetime.now(timezone.utc).date()
    result = []
    for task in tasks:
        if task.due_date is not None:
            if task.due_date.date() == today:
                result.append(task)
        elif task.status in (TaskStatus.TODO, TaskStatus.DOING):
            result.append(task)
    return result


@dataclass
class SnippetFilter:
    search: str = ""
    language: Optional[str] = None
    task_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def matches(self, snippet: Snippet) -> bool:
        if self.search:
            needle = self.search.lower()
            if needle not in snippet.file_path.lower() and needle not in snippet.code_text.lower():
                return False
        if self.language and language_from_path(snippet.file_path) != self.language:
            return False
        if self.task_id and snippet.task_id != self.task_id:
            return False
        if self.date_from and snippet.created_at < self.date_from:
            return False
        if self.date_to and snippet.created_at > self.date_to:
            return False
        return True

    def apply(self, snippets: Iterable[Snippet]) -> List[Snippet]:
        return [s for s in snippets if self.matches(s)]


def sort_snippets(snippets: Sequence[Snippet], sort_by: str = "created_at", order: str = "desc") -> List[Snippet]:
    if sort_by not in SNIPPET_SORT_FIELDS:
        raise ValidationError(f"cannot sort snippets by {sort_by!r}")
    reverse = _check_order(order)
    if sort_by == "language":
        key = lambda s: language_from_path(s.file_path)
    elif sort_by == "file_path":
        key = lambda s: s.file_path.lower()
    else:
        key = lambda s: s.created_at
    return sorted(snippets, key=key, reverse=reverse)
