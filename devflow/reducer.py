"""
Status change reducer.

apply_status_change() is the one definition of what moving a task means.
TaskBoardController applies it to the locally held task list and persists
the very task object it produced, so the board and the store agree.
"""
import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from .schema import Task, TaskStatus, utc_now

logger = logging.getLogger(__name__)


def apply_status_change(
    tasks: Sequence[Task], task_id: str, new_status: TaskStatus
) -> Tuple[List[Task], Optional[Task]]:
    """Return (new task list, changed task).

    The input list is left untouched. Unknown ids and no-op moves return a
    copy of the list and None.
    """
    result: List[Task] = []
    changed: Optional[Task] = None
    for task in tasks:
        if task.id == task_id and task.status != new_status:
            changed = replace(task, status=new_status, updated_at=utc_now())
            result.append(changed)
        else:
            result.append(task)
    return result, changed


class TaskBoardController:
    """Owns a task list and keeps it in step with a TaskStore.

    Plug `change_status` into KanbanBoard(on_task_status_change=...).
    """

    def __init__(self, store, tasks: Optional[Sequence[Task]] = None):
        self.store = store
        self.tasks: List[Task] = list(tasks) if tasks is not None else []

    def load(self, user_id: Optional[str] = None, project_id: Optional[str] = None) -> List[Task]:
        self.tasks = self.store.list_tasks(user_id=user_id, project_id=project_id)
        return self.tasks

    def change_status(self, task_id: str, new_status: TaskStatus) -> Optional[Task]:
        """Apply the move locally, then write the same task to the store.

        If the write fails the local list is rolled back.
        """
        previous = self.tasks
        self.tasks, changed = apply_status_change(previous, task_id, new_status)
        if changed is None:
            return None
        if not self.store.save_task(changed):
            logger.error(f"Status change for task {task_id} not persisted, rolling back")
            self.tasks = previous
            return None
        return changed
