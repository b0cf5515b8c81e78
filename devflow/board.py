"""
Kanban board view model.

Three pieces:
  project_columns()  - groups an owned task list into status columns
  DragState          - idle/dragging state of the single drag slot
  KanbanBoard        - render contract + gesture handling, talks to the
                       outside world only through its callbacks

The board never mutates the task list it is given. A completed drag is
reported as on_task_status_change(task_id, new_status) and it is up to the
owner (see reducer.TaskBoardController) to apply it.
"""
import copy
import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .schema import DEFAULT_COLUMNS, StatusColumn, Task, TaskStatus

logger = logging.getLogger(__name__)

# Pointer travel (px) before a press on a card becomes a drag.
DEFAULT_ACTIVATION_DISTANCE = 8.0

StatusChangeCallback = Callable[[str, TaskStatus], None]
AddTaskCallback = Callable[[TaskStatus], None]
TaskClickCallback = Callable[[Task], None]


def project_columns(
    tasks: Sequence[Task],
    columns: Sequence[StatusColumn] = DEFAULT_COLUMNS,
) -> "OrderedDict[TaskStatus, List[Task]]":
    """Group tasks by status, one list per column, in column order.

    Single pass over the tasks, so relative order inside a column is the
    input order. Tasks whose status has no column are left out.
    """
    projection: "OrderedDict[TaskStatus, List[Task]]" = OrderedDict(
        (col.value, []) for col in columns
    )
    for task in tasks:
        bucket = projection.get(task.status)
        if bucket is not None:
            bucket.append(task)
    return projection


def resolve_target_status(
    over_id: Optional[str],
    tasks: Sequence[Task],
    columns: Sequence[StatusColumn] = DEFAULT_COLUMNS,
) -> Optional[TaskStatus]:
    """Status a drop over `over_id` asks for, or None for no valid target.

    A column id means that column's status. A task id means the status of
    that task (join its column). Column ids win over task ids.
    """
    if over_id is None:
        return None
    for col in columns:
        if col.value.value == over_id:
            return col.value
    for task in tasks:
        if task.id == over_id:
            return task.status
    return None


class DragPhase(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass
class DragState:
    """The single drag slot.

    While IDLE a card may be pressed but not yet moved far enough; that
    press lives in `pressed_task_id`/`origin` and becomes a click if the
    pointer is released before the activation distance is reached.
    """
    phase: DragPhase = DragPhase.IDLE
    active_task_id: Optional[str] = None
    preview: Optional[Task] = None
    pressed_task_id: Optional[str] = None
    origin: Optional[tuple] = None

    def reset(self) -> None:
        self.phase = DragPhase.IDLE
        self.active_task_id = None
        self.preview = None
        self.pressed_task_id = None
        self.origin = None


@dataclass
class ColumnView:
    """What one rendered column shows."""
    column: StatusColumn
    tasks: List[Task] = field(default_factory=list)

    @property
    def status(self) -> TaskStatus:
        return self.column.value

    @property
    def count(self) -> int:
        return len(self.tasks)

    @property
    def is_empty(self) -> bool:
        return not self.tasks

    @property
    def placeholder(self) -> Optional[str]:
        if self.tasks:
            return None
        return f"No tasks in {self.column.label.lower()}"

    def to_dict(self) -> Dict:
        data = self.column.to_dict()
        data.update({
            "count": self.count,
            "tasks": [t.to_dict() for t in self.tasks],
            "placeholder": self.placeholder,
        })
        return data


class KanbanBoard:
    """Board over a caller-owned task list.

    Callbacks are optional. Without on_task_status_change the board is
    read-only: drops still resolve but nothing happens.
    """

    def __init__(
        self,
        tasks: Sequence[Task],
        columns: Sequence[StatusColumn] = DEFAULT_COLUMNS,
        on_task_status_change: Optional[StatusChangeCallback] = None,
        on_add_task: Optional[AddTaskCallback] = None,
        on_task_click: Optional[TaskClickCallback] = None,
        activation_distance: float = DEFAULT_ACTIVATION_DISTANCE,
    ):
        self.tasks = tasks
        self.columns = list(columns)
        self.on_task_status_change = on_task_status_change
        self.on_add_task = on_add_task
        self.on_task_click = on_task_click
        self.activation_distance = activation_distance
        self.drag = DragState()

    def set_tasks(self, tasks: Sequence[Task]) -> None:
        """Swap in the owner's latest task list (a re-render)."""
        self.tasks = tasks

    def _find(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    # ── Rendering ────────────────────────────────────────────────────────

    def render(self) -> List[ColumnView]:
        """Columns in the configured order, counts recomputed every call."""
        projection = project_columns(self.tasks, self.columns)
        return [ColumnView(col, projection[col.value]) for col in self.columns]

    def add_task(self, status: TaskStatus) -> None:
        """Add affordance on a column header or empty-column placeholder."""
        if self.on_add_task is not None:
            self.on_add_task(status)

    # ── Gestures ─────────────────────────────────────────────────────────

    def press(self, task_id: str, x: float = 0.0, y: float = 0.0) -> bool:
        """Pointer down on a card. Returns False if the press is ignored."""
        if self.drag.phase is DragPhase.DRAGGING or self.drag.pressed_task_id:
            return False
        if self._find(task_id) is None:
            return False
        self.drag.pressed_task_id = task_id
        self.drag.origin = (x, y)
        return True

    def move(self, x: float, y: float) -> DragPhase:
        """Pointer move; starts the drag once past the activation distance."""
        if self.drag.phase is DragPhase.IDLE and self.drag.pressed_task_id:
            ox, oy = self.drag.origin
            if math.hypot(x - ox, y - oy) >= self.activation_distance:
                self._start(self.drag.pressed_task_id)
        return self.drag.phase

    def start_drag(self, task_id: str) -> bool:
        """Start a drag directly (activation already decided by the caller)."""
        if self.drag.phase is DragPhase.DRAGGING:
            return False
        if self._find(task_id) is None:
            return False
        self._start(task_id)
        return True

    def _start(self, task_id: str) -> None:
        task = self._find(task_id)
        self.drag.phase = DragPhase.DRAGGING
        self.drag.active_task_id = task_id
        self.drag.preview = copy.deepcopy(task)
        self.drag.pressed_task_id = None

    def release(self, over_id: Optional[str] = None) -> Optional[TaskStatus]:
        """Pointer up, optionally over a column id or task id.

        Returns the resolved new status, or None for a click, a cancelled
        drop, or a drop back into the task's own column.
        """
        if self.drag.phase is DragPhase.IDLE:
            pressed = self.drag.pressed_task_id
            self.drag.reset()
            task = self._find(pressed) if pressed else None
            if task is not None and self.on_task_click is not None:
                self.on_task_click(task)
            return None

        active_id = self.drag.active_task_id
        self.drag.reset()

        active = self._find(active_id)
        if active is None:
            return None

        target = resolve_target_status(over_id, self.tasks, self.columns)
        if target is None or target == active.status:
            return None

        logger.info(f"Moving task {active_id} from {active.status.value} to {target.value}")
        if self.on_task_status_change is not None:
            self.on_task_status_change(active_id, target)
        return target

    def cancel(self) -> None:
        """Abort any gesture without side effects."""
        self.drag.reset()

    def drop(self, task_id: str, over_id: Optional[str]) -> Optional[TaskStatus]:
        """One-shot drag of `task_id` released over `over_id`."""
        if not self.start_drag(task_id):
            return None
        return self.release(over_id)
