"""Shared test fixtures for DevFlow tests."""

import sys
from pathlib import Path

import pytest

# Make devflow and devflow_server importable without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from devflow.schema import Task, TaskStatus
from devflow.store import TaskStore


@pytest.fixture
def store(tmp_path):
    return TaskStore(str(tmp_path / "devflow.db"))


@pytest.fixture
def make_task():
    def _make(task_id, status=TaskStatus.TODO, **kwargs):
        return Task(id=task_id, title=kwargs.pop("title", f"Task {task_id}"), status=status, **kwargs)
    return _make
