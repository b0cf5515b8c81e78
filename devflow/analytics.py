"""
Productivity analytics: completion records, goals, and the metrics block
fed to the insights prompt.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence

from .schema import Task, TaskAnalytics, UserGoal, ValidationError, parse_number, utc_now

logger = logging.getLogger(__name__)

TIME_RANGES = {"7_days": 7, "30_days": 30, "90_days": 90}
DEFAULT_TIME_RANGE = "30_days"
DEFAULT_COMPLEXITY = 3


def time_range_days(time_range: str) -> int:
    """Days covered by a named range; unknown names mean 30 days."""
    return TIME_RANGES.get(time_range, TIME_RANGES[DEFAULT_TIME_RANGE])


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round like a calculator does (0.5 goes up), not banker's rounding."""
    quant = Decimal(1).scaleb(-ndigits)
    rounded = Decimal(str(value)).quantize(quant, rounding=ROUND_HALF_UP)
    return int(rounded) if ndigits == 0 else float(rounded)


def efficiency_score(estimated_hours: Optional[float], actual_hours: Optional[float]) -> float:
    """estimated/actual capped at 2; 1 when either side is missing."""
    if estimated_hours and actual_hours:
        return min(2.0, estimated_hours / actual_hours)
    return 1.0


@dataclass
class ProductivityMetrics:
    time_range: str
    total_tasks: int = 0
    completed_tasks: int = 0
    completion_rate: int = 0
    avg_efficiency: float = 1.0
    total_estimated_hours: float = 0.0
    total_actual_hours: float = 0.0
    tasks_by_type: Dict[str, int] = field(default_factory=dict)
    tasks_by_priority: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "time_range": self.time_range,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "completion_rate": self.completion_rate,
            "avg_efficiency": self.avg_efficiency,
            "total_estimated_hours": self.total_estimated_hours,
            "total_actual_hours": self.total_actual_hours,
            "tasks_by_type": dict(self.tasks_by_type),
            "tasks_by_priority": dict(self.tasks_by_priority),
        }


def compute_metrics(
    analytics: Sequence[TaskAnalytics],
    tasks: Sequence[Task],
    time_range: str = DEFAULT_TIME_RANGE,
) -> ProductivityMetrics:
    """Aggregate completion records and tasks created in the same window."""
    completed = [a for a in analytics if a.completion_date]
    total = len(tasks)

    rate = (len(completed) / total) * 100 if total > 0 else 0
    avg_eff = (
        sum(a.efficiency_score or 1 for a in completed) / len(completed)
        if completed else 1
    )
    est = sum(a.estimated_hours or 0 for a in completed)
    act = sum(a.actual_hours or 0 for a in completed)

    by_type: Dict[str, int] = {}
    by_priority: Dict[str, int] = {}
    for t in tasks:
        by_type[t.type.value] = by_type.get(t.type.value, 0) + 1
        by_priority[t.priority.value] = by_priority.get(t.priority.value, 0) + 1

    return ProductivityMetrics(
        time_range=time_range,
        total_tasks=total,
        completed_tasks=len(completed),
        completion_rate=round_half_up(rate),
        avg_efficiency=round_half_up(avg_eff, 2),
        total_estimated_hours=round_half_up(est, 1),
        total_actual_hours=round_half_up(act, 1),
        tasks_by_type=by_type,
        tasks_by_priority=by_priority,
    )


def record_completion(
    store,
    task_id: str,
    actual_hours: float,
    estimated_hours: Optional[float] = None,
    user_id: str = "",
    now: Optional[datetime] = None,
) -> Optional[TaskAnalytics]:
    """Store one completion measurement. Returns None if the write failed."""
    actual_hours = parse_number(actual_hours, "actual_hours")
    if actual_hours is None:
        raise ValidationError("actual_hours is required")
    estimated_hours = parse_number(estimated_hours, "estimated_hours")
    record = TaskAnalytics(
        task_id=task_id,
        estimated_hours=estimated_hours,
        actual_hours=actual_hours,
        completion_date=now or utc_now(),
        efficiency_score=efficiency_score(estimated_hours, actual_hours),
        complexity_score=DEFAULT_COMPLEXITY,
        user_id=user_id,
    )
    if not store.save_analytics(record):
        return None
    logger.info(f"Recorded completion of {task_id}: efficiency {round_half_up(record.efficiency_score * 100)}%")
    return record


def create_goal(
    store,
    goal_type: str,
    target_value: float,
    period_days: int = 7,
    user_id: str = "",
    now: Optional[datetime] = None,
) -> Optional[UserGoal]:
    if not goal_type or not isinstance(goal_type, str):
        raise ValidationError("goal_type is required")
    target_value = parse_number(target_value, "target_value")
    if target_value is None:
        raise ValidationError("target_value is required")
    if isinstance(period_days, bool):
        raise ValidationError("period_days must be a whole number")
    try:
        period_days = int(period_days)
    except (TypeError, ValueError):
        raise ValidationError("period_days must be a whole number")
    if period_days <= 0:
        raise ValidationError("period_days must be positive")
    start = now or utc_now()
    goal = UserGoal(
        goal_type=goal_type,
        target_value=target_value,
        period_start=start,
        period_end=start + timedelta(days=period_days),
        user_id=user_id,
    )
    return goal if store.save_goal(goal) else None


def recent_completion_lines(
    analytics: Sequence[TaskAnalytics], tasks_by_id: Dict[str, Task], limit: int = 10
) -> List[str]:
    """One line per completion, newest `limit`, oldest first."""
    lines = []
    for a in list(analytics)[-limit:]:
        task = tasks_by_id.get(a.task_id)
        title = task.title if task else "Task"
        kind = task.type.value if task else "unknown"
        lines.append(
            f"- {title} ({kind}): estimated {a.estimated_hours}h, "
            f"actual {a.actual_hours}h, efficiency {a.efficiency_score}"
        )
    return lines
