"""
AI operations over the DevFlow store.

Each operation is one straight line: load rows, build a prompt, make a
single chat-completions call, decode the reply into a typed result,
persist, return. Decoding happens here, at the LLM boundary; callers only
ever see the dataclasses below.

Operations:
  chat()      - free-form prompt, optionally grounded in a task
  suggest()   - task assistant: breakdown / priority / subtasks / context
  estimate()  - time estimate / category suggestion / deadline prediction
  insights()  - productivity analysis over a time range
"""
import json
import logging
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from .analytics import compute_metrics, recent_completion_lines, time_range_days, DEFAULT_TIME_RANGE
from .llm import ChatClient, parse_json_reply
from .schema import NotFoundError, Prompt, ValidationError, utc_now

logger = logging.getLogger(__name__)


CHAT_SYSTEM_PROMPT = (
    "You are an AI assistant specialized in helping developers with their daily tasks, "
    "code reviews, and project management. Provide clear, actionable advice and suggestions."
)


# ── Field coercion for loosely-typed LLM JSON ────────────────────────────────

def _str(value) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else json.dumps(value) if isinstance(value, (dict, list)) else str(value)


def _float(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _str_list(value) -> List[str]:
    if isinstance(value, list):
        return [_str(v) for v in value]
    if isinstance(value, str) and value:
        return [value]
    return []


# ── Task assistant variants ──────────────────────────────────────────────────

@dataclass
class Subtask:
    title: str
    description: str = ""
    priority: str = ""
    estimated_hours: Optional[float] = None
    technical_considerations: str = ""

    @classmethod
    def from_json(cls, data) -> "Subtask":
        if not isinstance(data, dict):
            return cls(title=_str(data))
        return cls(
            title=_str(data.get("title")),
            description=_str(data.get("description")),
            priority=_str(data.get("priority")),
            estimated_hours=_float(data.get("estimated_hours")),
            technical_considerations=_str(data.get("technical_considerations")),
        )


def _subtasks(data: Dict[str, Any]) -> List[Subtask]:
    items = data.get("subtasks")
    if not isinstance(items, list):
        # Some replies name the list after the request ("breakdown", "tasks")
        items = next((v for v in data.values() if isinstance(v, list)), [])
    return [Subtask.from_json(i) for i in items]


@dataclass
class BreakdownSuggestion:
    kind = "breakdown"
    subtasks: List[Subtask] = field(default_factory=list)

    @classmethod
    def from_json(cls, data):
        return cls(subtasks=_subtasks(data))


@dataclass
class PrioritySuggestion:
    kind = "priority"
    suggested_priority: str = ""
    reasoning: str = ""

    @classmethod
    def from_json(cls, data):
        return cls(
            suggested_priority=_str(data.get("suggested_priority")),
            reasoning=_str(data.get("reasoning")),
        )


@dataclass
class SubtasksSuggestion:
    kind = "subtasks"
    subtasks: List[Subtask] = field(default_factory=list)

    @classmethod
    def from_json(cls, data):
        return cls(subtasks=_subtasks(data))


@dataclass
class ContextSuggestion:
    kind = "context"
    context_insights: List[str] = field(default_factory=list)
    potential_blockers: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data):
        return cls(
            context_insights=_str_list(data.get("context_insights")),
            potential_blockers=_str_list(data.get("potential_blockers")),
            suggestions=_str_list(data.get("suggestions")),
        )


@dataclass
class RawSuggestion:
    """Reply that was not a JSON object."""
    kind = "raw"
    raw_response: str = ""


Suggestion = Union[BreakdownSuggestion, PrioritySuggestion, SubtasksSuggestion, ContextSuggestion, RawSuggestion]

SUGGESTION_PROMPTS = {
    "breakdown": (
        BreakdownSuggestion,
        "You are an expert project manager. Break down complex tasks into smaller, manageable subtasks. "
        "Return a JSON object with an array of subtasks, each having title, description, priority, and estimated_hours.",
        'Break down this task: "{title}"\nDescription: {description}\nType: {type}\nPriority: {priority}',
    ),
    "priority": (
        PrioritySuggestion,
        "You are an expert in task prioritization. Analyze tasks and suggest appropriate priority levels with reasoning. "
        "Return a JSON object with suggested_priority and reasoning.",
        'Analyze the priority for this task: "{title}"\nDescription: {description}\nType: {type}\n'
        "Current priority: {priority}\nDue date: {due_date}",
    ),
    "subtasks": (
        SubtasksSuggestion,
        "You are a development expert. Create detailed subtasks for development work. "
        "Return a JSON object with an array of subtasks including technical considerations.",
        'Create subtasks for: "{title}"\nDescription: {description}\nType: {type}',
    ),
    "context": (
        ContextSuggestion,
        "You are a context analysis expert. Provide additional context, considerations, and insights for tasks. "
        "Return a JSON object with context_insights, potential_blockers, and suggestions.",
        'Provide context analysis for: "{title}"\nDescription: {description}\nType: {type}\nPriority: {priority}',
    ),
}


def decode_suggestion(suggestion_type: str, reply: str) -> Suggestion:
    data = parse_json_reply(reply)
    if data is None:
        return RawSuggestion(raw_response=reply)
    variant = SUGGESTION_PROMPTS[suggestion_type][0]
    return variant.from_json(data)


def suggestion_confidence(reply: str) -> float:
    """Longer replies score higher, clamped to [0.5, 0.95]."""
    return min(0.95, max(0.5, (len(reply) / 500) * 0.8 + 0.2))


# ── Estimator variants ───────────────────────────────────────────────────────

@dataclass
class TimeEstimate:
    kind = "time_estimate"
    estimated_hours: Optional[float] = None
    confidence_score: Optional[float] = None
    complexity_score: Optional[float] = None
    reasoning: str = ""

    @classmethod
    def from_json(cls, data):
        return cls(
            estimated_hours=_float(data.get("estimated_hours")),
            confidence_score=_float(data.get("confidence_score")),
            complexity_score=_float(data.get("complexity_score")),
            reasoning=_str(data.get("reasoning")),
        )


@dataclass
class CategorySuggestion:
    kind = "category_suggestion"
    suggested_type: str = ""
    suggested_priority: str = ""
    tags: List[str] = field(default_factory=list)
    reasoning: str = ""

    @classmethod
    def from_json(cls, data):
        return cls(
            suggested_type=_str(data.get("suggested_type")),
            suggested_priority=_str(data.get("suggested_priority")),
            tags=_str_list(data.get("tags")),
            reasoning=_str(data.get("reasoning")),
        )


@dataclass
class DeadlinePrediction:
    kind = "deadline_prediction"
    suggested_deadline: str = ""
    workload_impact: str = ""
    reasoning: str = ""

    @classmethod
    def from_json(cls, data):
        return cls(
            suggested_deadline=_str(data.get("suggested_deadline")),
            workload_impact=_str(data.get("workload_impact")),
            reasoning=_str(data.get("reasoning")),
        )


@dataclass
class RawEstimation:
    kind = "raw"
    raw_response: str = ""
    error: str = "Failed to parse JSON"


Estimation = Union[TimeEstimate, CategorySuggestion, DeadlinePrediction, RawEstimation]

ESTIMATION_TYPES = {
    "time_estimate": TimeEstimate,
    "category_suggestion": CategorySuggestion,
    "deadline_prediction": DeadlinePrediction,
}


def decode_estimation(estimation_type: str, reply: str) -> Estimation:
    data = parse_json_reply(reply)
    if data is None:
        return RawEstimation(raw_response=reply)
    return ESTIMATION_TYPES[estimation_type].from_json(data)


# ── Insights ─────────────────────────────────────────────────────────────────

INSIGHTS_SYSTEM_PROMPT = """You are a productivity analysis expert. Analyze user productivity data and generate actionable insights. Return a JSON object with:
{
  "efficiency_trend": "improving|declining|stable",
  "peak_productivity_patterns": "description of when user is most productive",
  "bottlenecks": ["list of identified bottlenecks"],
  "recommendations": ["specific actionable recommendations"],
  "goal_suggestions": [{"type": "goal_type", "target": number, "reason": "why this goal"}],
  "insights_summary": "brief overall summary"
}"""

# Insight keys persisted as individual rows
PERSISTED_INSIGHT_TYPES = ("efficiency_trend", "peak_hours", "task_patterns", "recommendations")
INSIGHT_CONFIDENCE = 0.8
FALLBACK_RECOMMENDATIONS = ["Review task estimation accuracy", "Track time more consistently"]


@dataclass
class GoalSuggestion:
    type: str
    target: Optional[float] = None
    reason: str = ""


@dataclass
class ProductivityInsights:
    efficiency_trend: str = ""
    peak_productivity_patterns: str = ""
    bottlenecks: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    goal_suggestions: List[GoalSuggestion] = field(default_factory=list)
    insights_summary: str = ""
    error: str = ""
    # Keys the model returned beyond the documented ones
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = (
        "efficiency_trend", "peak_productivity_patterns", "bottlenecks",
        "recommendations", "goal_suggestions", "insights_summary", "error",
    )

    @classmethod
    def from_reply(cls, reply: str) -> "ProductivityInsights":
        data = parse_json_reply(reply)
        if data is None:
            return cls(
                insights_summary=reply,
                recommendations=list(FALLBACK_RECOMMENDATIONS),
                error="Failed to parse structured insights",
            )
        goals = []
        raw_goals = data.get("goal_suggestions")
        for g in raw_goals if isinstance(raw_goals, list) else []:
            if isinstance(g, dict):
                goals.append(GoalSuggestion(
                    type=_str(g.get("type")), target=_float(g.get("target")), reason=_str(g.get("reason")),
                ))
        return cls(
            efficiency_trend=_str(data.get("efficiency_trend")),
            peak_productivity_patterns=_str(data.get("peak_productivity_patterns")),
            bottlenecks=_str_list(data.get("bottlenecks")),
            recommendations=_str_list(data.get("recommendations")),
            goal_suggestions=goals,
            insights_summary=_str(data.get("insights_summary")),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        extra = data.pop("extra")
        if not data["error"]:
            data.pop("error")
        data.update(extra)
        return data


def variant_to_dict(variant) -> Dict[str, Any]:
    """JSON shape of a suggestion/estimation variant (what gets stored)."""
    data = {"kind": variant.kind}
    data.update(asdict(variant))
    return data


# ── Operations ───────────────────────────────────────────────────────────────

@dataclass
class ChatResponse:
    response: str
    tokens_used: int
    prompt_id: Optional[str]

    def to_dict(self):
        return {"response": self.response, "tokens_used": self.tokens_used, "prompt_id": self.prompt_id}


class Assistant:
    """Binds a TaskStore to a ChatClient."""

    def __init__(self, store, client: ChatClient, insight_ttl_days: int = 7):
        self.store = store
        self.client = client
        self.insight_ttl_days = insight_ttl_days

    def chat(
        self,
        prompt: str,
        user_id: str,
        task_id: Optional[str] = None,
        template_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ChatResponse:
        if not prompt or not user_id:
            raise ValidationError("prompt and user_id are required")
        logger.info(f"Processing AI chat request: task={task_id} user={user_id} prompt={prompt[:100]!r}")

        context_data = dict(context or {})
        full_prompt = prompt
        if task_id:
            task = self.store.get_task(task_id, user_id)
            if task:
                context_data["task"] = task.to_dict()
                full_prompt = (
                    f'Context: Working on task "{task.title}" ({task.type.value}, priority: {task.priority.value})\n'
                    f"Task description: {task.description or 'No description'}\n\n"
                    f"User prompt: {prompt}"
                )

        result = self.client.complete(CHAT_SYSTEM_PROMPT, full_prompt, temperature=0.7, max_tokens=2000)

        if template_id:
            self.store.increment_template_usage(template_id, user_id)

        record = Prompt(
            prompt_text=prompt,
            response_text=result.text,
            task_id=task_id or None,
            template_id=template_id or None,
            context=context_data,
            tokens_used=result.tokens_used,
            model_used=result.model,
            user_id=user_id,
        )
        prompt_id = record.id if self.store.save_prompt(record) else None
        if prompt_id is None:
            logger.error(f"Error saving prompt for user {user_id}")
        return ChatResponse(response=result.text, tokens_used=result.tokens_used, prompt_id=prompt_id)

    def suggest(self, task_id: str, user_id: str, suggestion_type: str) -> Dict[str, Any]:
        if not task_id or not user_id or not suggestion_type:
            raise ValidationError("task_id, user_id, and suggestion_type are required")
        if suggestion_type not in SUGGESTION_PROMPTS:
            raise ValidationError(f"Invalid suggestion type: {suggestion_type}")

        task = self.store.get_task(task_id, user_id)
        if task is None:
            raise NotFoundError("Task not found or access denied")

        logger.info(f"Processing AI task assistant request: task={task_id} type={suggestion_type}")
        _, system_prompt, user_template = SUGGESTION_PROMPTS[suggestion_type]
        user_prompt = user_template.format(
            title=task.title,
            description=task.description or "No description",
            type=task.type.value,
            priority=task.priority.value,
            due_date=task.due_date.isoformat() if task.due_date else "Not set",
        )

        result = self.client.complete(system_prompt, user_prompt, temperature=0.3, max_tokens=1500)
        suggestion = decode_suggestion(suggestion_type, result.text)
        confidence = suggestion_confidence(result.text)
        logger.info(f"AI suggestion generated: type={suggestion_type} confidence={confidence:.2f}")

        data = variant_to_dict(suggestion)
        suggestion_id = self.store.save_suggestion(task_id, suggestion_type, data, confidence, user_id)
        if suggestion_id is None:
            logger.error(f"Error saving suggestion for task {task_id}")
        return {
            "suggestion": suggestion,
            "confidence_score": confidence,
            "suggestion_id": suggestion_id,
        }

    def estimate(self, task_data: Dict[str, Any], user_id: str, estimation_type: str) -> Dict[str, Any]:
        if not task_data or not user_id or not estimation_type:
            raise ValidationError("task_data, user_id, and estimation_type are required")
        if estimation_type not in ESTIMATION_TYPES:
            raise ValidationError(f"Invalid estimation type: {estimation_type}")

        logger.info(f"Processing AI estimation request: type={estimation_type} user={user_id}")
        history = self.store.list_analytics(user_id=user_id, limit=20)
        system_prompt, user_prompt = _estimation_prompts(estimation_type, task_data, history)

        result = self.client.complete(system_prompt, user_prompt, temperature=0.3, max_tokens=1000)
        estimation = decode_estimation(estimation_type, result.text)
        return {
            "estimation": estimation,
            "type": estimation_type,
            "historical_context": len(history),
        }

    def insights(self, user_id: str, time_range: str = DEFAULT_TIME_RANGE, now: Optional[datetime] = None) -> Dict[str, Any]:
        if not user_id:
            raise ValidationError("user_id is required")
        logger.info(f"Generating productivity insights for user: {user_id}")

        end = now or utc_now()
        start = end - timedelta(days=time_range_days(time_range))
        analytics = self.store.list_analytics(user_id=user_id, since=start, until=end, newest_first=False)
        tasks = self.store.list_tasks(user_id=user_id, created_since=start)
        metrics = compute_metrics(analytics, tasks, time_range)

        tasks_by_id = {t.id: t for t in tasks}
        for a in analytics:
            if a.task_id not in tasks_by_id:
                older = self.store.get_task(a.task_id)
                if older:
                    tasks_by_id[older.id] = older

        user_prompt = (
            "Analyze this productivity data:\n"
            f"{json.dumps(metrics.to_dict(), indent=2)}\n\n"
            "Recent completion patterns:\n"
            + "\n".join(recent_completion_lines(analytics, tasks_by_id))
            + "\n\nProvide insights on productivity trends, efficiency patterns, "
            "and actionable recommendations for improvement."
        )

        result = self.client.complete(INSIGHTS_SYSTEM_PROMPT, user_prompt, temperature=0.4, max_tokens=1500)
        insights = ProductivityInsights.from_reply(result.text)
        payload = insights.to_dict()

        expires_at = end + timedelta(days=self.insight_ttl_days)
        for insight_type in PERSISTED_INSIGHT_TYPES:
            if payload.get(insight_type):
                self.store.save_insight(
                    insight_type, {insight_type: payload[insight_type]},
                    INSIGHT_CONFIDENCE, expires_at, user_id,
                )

        logger.info("Productivity insights generated successfully")
        return {
            "metrics": metrics,
            "insights": insights,
            "generated_at": end.isoformat(),
        }


def _estimation_prompts(estimation_type: str, task: Dict[str, Any], history) -> tuple:
    title = task.get("title", "")
    description = task.get("description") or "No description"

    if estimation_type == "time_estimate":
        if history:
            avg = sum(h.efficiency_score or 1 for h in history) / len(history)
            hist = f"User has completed {len(history)} similar tasks with average efficiency of {avg:.2f}"
        else:
            hist = "No historical data available"
        return (
            "You are an expert project manager and time estimation specialist. Based on task details and "
            "historical data, provide accurate time estimates. Return a JSON object with estimated_hours "
            "(decimal), confidence_score (0-1), complexity_score (1-5), and reasoning.",
            f"Estimate time for this task:\nTitle: {title}\nDescription: {description}\n"
            f"Type: {task.get('type')}\nPriority: {task.get('priority')}\n\n"
            f"Historical context: {hist}\n\n"
            "Consider task complexity, type, and user's historical performance.",
        )

    if estimation_type == "category_suggestion":
        return (
            "You are an expert in task categorization and project management. Analyze tasks and suggest "
            "appropriate categories, priorities, and types. Return a JSON object with suggested_type, "
            "suggested_priority, tags, and reasoning.",
            f"Categorize this task:\nTitle: {title}\nDescription: {description}\n"
            f"Current Type: {task.get('type') or 'Not set'}\n"
            f"Current Priority: {task.get('priority') or 'Not set'}\n\n"
            "Suggest better categorization based on content and urgency.",
        )

    if history:
        workload = f"User typically handles {math.ceil(len(history) / 4)} tasks per week"
    else:
        workload = "No workload history available"
    return (
        "You are a deadline prediction expert. Based on task complexity, user workload, and historical data, "
        "predict realistic deadlines. Return a JSON object with suggested_deadline (ISO string), "
        "workload_impact, and reasoning.",
        f"Predict deadline for this task:\nTitle: {title}\nDescription: {description}\n"
        f"Type: {task.get('type')}\nPriority: {task.get('priority')}\n"
        f"Estimated Hours: {task.get('estimated_hours') or 'Not estimated'}\n\n"
        f"Current workload context: {workload}",
    )
