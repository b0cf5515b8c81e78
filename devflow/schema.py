"""
DevFlow record schema.

Workflow:
  To Do → In Progress → Review → Done

A task's status is the only thing the board changes. Every other record
(projects, snippets, prompts, templates, reviews, analytics) is plain CRUD
data owned by the store.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone, date
from typing import Optional, List, Dict, Any
import json
import math
import re
import uuid


class ValidationError(Exception):
    """Raised when a record field holds a value outside its closed set."""
    pass


class NotFoundError(LookupError):
    """Raised when a referenced record does not exist for the caller."""
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _text(data: Dict[str, Any], key: str) -> str:
    """String field, stripped; ValidationError for any other JSON type."""
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip()


def parse_number(value, name: str) -> Optional[float]:
    """Optional non-negative number from JSON; numeric strings are accepted."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"{name} must be a non-negative number")
    return number


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value


def _load_json(value, default):
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return default
    return default if value is None else value


class _ClosedEnum(Enum):
    """Enum with strict parsing for values arriving from JSON or the DB."""

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError(f"Invalid {cls.__name__}: {value!r} (expected one of: {allowed})")


class TaskStatus(_ClosedEnum):
    """Workflow stages, in board order."""
    TODO = "todo"
    DOING = "doing"
    REVIEW = "review"
    DONE = "done"


class TaskType(_ClosedEnum):
    CODE = "code"
    REVIEW = "review"
    PROMPT = "prompt"
    DOC = "doc"


class Priority(_ClosedEnum):
    LOW = "low"
    MED = "med"
    HIGH = "high"

    @classmethod
    def parse(cls, value):
        # Clients send the long form; "med" stays the stored value
        if isinstance(value, str) and value.strip().lower() == "medium":
            return cls.MED
        return super().parse(value)

    @property
    def rank(self) -> int:
        return {"low": 0, "med": 1, "high": 2}[self.value]


class ProjectStatus(_ClosedEnum):
    IDEA = "idea"
    ACTIVE = "active"
    ON_HOLD = "on-hold"
    DONE = "done"


class ReviewStatus(_ClosedEnum):
    OPEN = "open"
    CHANGES_REQUESTED = "changes-requested"
    MERGED = "merged"


@dataclass(frozen=True)
class StatusColumn:
    """Display definition for one board column."""
    value: TaskStatus
    label: str
    icon: str = ""
    color: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value.value,
            "label": self.label,
            "icon": self.icon,
            "color": self.color,
        }


DEFAULT_COLUMNS: List[StatusColumn] = [
    StatusColumn(TaskStatus.TODO, "To Do", "clock", "bg-slate-100 text-slate-600"),
    StatusColumn(TaskStatus.DOING, "In Progress", "alert-circle", "bg-blue-100 text-blue-600"),
    StatusColumn(TaskStatus.REVIEW, "Review", "eye", "bg-purple-100 text-purple-600"),
    StatusColumn(TaskStatus.DONE, "Done", "check-circle", "bg-green-100 text-green-600"),
]


@dataclass
class Task:
    """A unit of work shown as a card on the board."""

    title: str
    id: str = field(default_factory=new_id)
    description: str = ""
    type: TaskType = TaskType.CODE
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MED
    due_date: Optional[datetime] = None
    project_id: Optional[str] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    tags: List[str] = field(default_factory=list)
    user_id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type.value,
            "status": self.status.value,
            "priority": self.priority.value,
            "due_date": _iso(self.due_date),
            "project_id": self.project_id,
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "tags": list(self.tags),
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        title = _text(data, "title")
        if not title:
            raise ValidationError("title is required")
        tags = _load_json(data.get("tags"), [])
        return cls(
            id=data.get("id") or new_id(),
            title=title,
            description=data.get("description") or "",
            type=TaskType.parse(data.get("type") or "code"),
            status=TaskStatus.parse(data.get("status") or "todo"),
            priority=Priority.parse(data.get("priority") or "med"),
            due_date=parse_datetime(data.get("due_date")),
            project_id=data.get("project_id") or None,
            estimated_hours=parse_number(data.get("estimated_hours"), "estimated_hours"),
            actual_hours=parse_number(data.get("actual_hours"), "actual_hours"),
            tags=[str(t) for t in tags] if isinstance(tags, list) else [],
            user_id=data.get("user_id") or "",
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Project:
    name: str
    id: str = field(default_factory=new_id)
    description: str = ""
    repo_url: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    user_id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "repo_url": self.repo_url,
            "status": self.status.value,
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        name = _text(data, "name")
        if not name:
            raise ValidationError("name is required")
        return cls(
            id=data.get("id") or new_id(),
            name=name,
            description=data.get("description") or "",
            repo_url=data.get("repo_url") or None,
            status=ProjectStatus.parse(data.get("status") or "active"),
            user_id=data.get("user_id") or "",
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Snippet:
    file_path: str
    code_text: str
    id: str = field(default_factory=new_id)
    commit_sha: Optional[str] = None
    task_id: Optional[str] = None
    user_id: str = ""
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "code_text": self.code_text,
            "commit_sha": self.commit_sha,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snippet":
        if not _text(data, "file_path") or not isinstance(data.get("code_text"), str):
            raise ValidationError("file_path and code_text are required")
        return cls(
            id=data.get("id") or new_id(),
            file_path=data["file_path"],
            code_text=data["code_text"],
            commit_sha=data.get("commit_sha") or None,
            task_id=data.get("task_id") or None,
            user_id=data.get("user_id") or "",
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )


def prompt_title(prompt_text: str, limit: int = 100) -> str:
    """Title shown in prompt history: the first `limit` chars of the prompt."""
    return prompt_text[:limit] + ("..." if len(prompt_text) > limit else "")


@dataclass
class Prompt:
    """A stored prompt/response exchange with the LLM."""
    prompt_text: str
    id: str = field(default_factory=new_id)
    title: str = ""
    response_text: str = ""
    task_id: Optional[str] = None
    template_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    tokens_used: int = 0
    model_used: str = ""
    user_id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not self.title:
            self.title = prompt_title(self.prompt_text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "prompt_text": self.prompt_text,
            "response_text": self.response_text,
            "task_id": self.task_id,
            "template_id": self.template_id,
            "context": self.context,
            "tokens_used": self.tokens_used,
            "model_used": self.model_used,
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prompt":
        return cls(
            id=data.get("id") or new_id(),
            title=data.get("title") or "",
            prompt_text=data.get("prompt_text") or "",
            response_text=data.get("response_text") or "",
            task_id=data.get("task_id") or None,
            template_id=data.get("template_id") or None,
            context=_load_json(data.get("context"), {}),
            tokens_used=int(data.get("tokens_used") or 0),
            model_used=data.get("model_used") or "",
            user_id=data.get("user_id") or "",
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


_TEMPLATE_VAR = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def extract_variables(template_text: str) -> List[str]:
    """Names of `{{variable}}` placeholders, first-seen order, no repeats."""
    seen: List[str] = []
    for name in _TEMPLATE_VAR.findall(template_text):
        if name not in seen:
            seen.append(name)
    return seen


@dataclass
class PromptTemplate:
    name: str
    template_text: str
    id: str = field(default_factory=new_id)
    description: str = ""
    category: str = "general"
    variables: List[str] = field(default_factory=list)
    is_public: bool = False
    usage_count: int = 0
    user_id: str = ""
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not self.variables:
            self.variables = extract_variables(self.template_text)

    def render(self, values: Dict[str, Any]) -> str:
        """Substitute placeholders; unknown ones are left as written."""
        def _sub(match):
            key = match.group(1)
            return str(values[key]) if key in values else match.group(0)
        return _TEMPLATE_VAR.sub(_sub, self.template_text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "template_text": self.template_text,
            "category": self.category,
            "variables": list(self.variables),
            "is_public": self.is_public,
            "usage_count": self.usage_count,
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptTemplate":
        name = _text(data, "name")
        if not name or not _text(data, "template_text"):
            raise ValidationError("name and template_text are required")
        variables = _load_json(data.get("variables"), [])
        return cls(
            id=data.get("id") or new_id(),
            name=name,
            template_text=data["template_text"],
            description=data.get("description") or "",
            category=data.get("category") or "general",
            variables=variables if isinstance(variables, list) else [],
            is_public=bool(data.get("is_public", False)),
            usage_count=int(data.get("usage_count") or 0),
            user_id=data.get("user_id") or "",
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )


@dataclass
class Review:
    pr_url: str
    id: str = field(default_factory=new_id)
    notes: str = ""
    status: ReviewStatus = ReviewStatus.OPEN
    reviewer: str = ""
    task_id: Optional[str] = None
    user_id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pr_url": self.pr_url,
            "notes": self.notes,
            "status": self.status.value,
            "reviewer": self.reviewer,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Review":
        pr_url = _text(data, "pr_url")
        if not pr_url:
            raise ValidationError("pr_url is required")
        return cls(
            id=data.get("id") or new_id(),
            pr_url=pr_url,
            notes=data.get("notes") or "",
            status=ReviewStatus.parse(data.get("status") or "open"),
            reviewer=data.get("reviewer") or "",
            task_id=data.get("task_id") or None,
            user_id=data.get("user_id") or "",
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


@dataclass
class TaskAnalytics:
    """One completed-task measurement used for estimates and insights."""
    task_id: str
    id: str = field(default_factory=new_id)
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    completion_date: Optional[datetime] = None
    efficiency_score: Optional[float] = None
    complexity_score: Optional[int] = None
    user_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "completion_date": _iso(self.completion_date),
            "efficiency_score": self.efficiency_score,
            "complexity_score": self.complexity_score,
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskAnalytics":
        return cls(
            id=data.get("id") or new_id(),
            task_id=data.get("task_id") or "",
            estimated_hours=data.get("estimated_hours"),
            actual_hours=data.get("actual_hours"),
            completion_date=parse_datetime(data.get("completion_date")),
            efficiency_score=data.get("efficiency_score"),
            complexity_score=data.get("complexity_score"),
            user_id=data.get("user_id") or "",
        )


@dataclass
class UserGoal:
    goal_type: str
    target_value: float
    period_start: datetime
    period_end: datetime
    id: str = field(default_factory=new_id)
    current_value: float = 0
    status: str = "active"
    user_id: str = ""
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "goal_type": self.goal_type,
            "target_value": self.target_value,
            "current_value": self.current_value,
            "period_start": _iso(self.period_start),
            "period_end": _iso(self.period_end),
            "status": self.status,
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserGoal":
        return cls(
            id=data.get("id") or new_id(),
            goal_type=data.get("goal_type") or "",
            target_value=data.get("target_value") or 0,
            current_value=data.get("current_value") or 0,
            period_start=parse_datetime(data.get("period_start")) or utc_now(),
            period_end=parse_datetime(data.get("period_end")) or utc_now(),
            status=data.get("status") or "active",
            user_id=data.get("user_id") or "",
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )
