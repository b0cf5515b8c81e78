"""
Tests for DevFlow records: closed enums, validation, templates.
"""
from datetime import date, datetime, timezone

import pytest

from devflow.schema import (
    DEFAULT_COLUMNS,
    Priority,
    Project,
    ProjectStatus,
    Prompt,
    PromptTemplate,
    Task,
    TaskStatus,
    ValidationError,
    extract_variables,
    parse_datetime,
)


def test_closed_enums():
    assert TaskStatus.parse(" DOING ") is TaskStatus.DOING
    assert ProjectStatus.parse("on-hold") is ProjectStatus.ON_HOLD
    assert Priority.HIGH.rank > Priority.MED.rank > Priority.LOW.rank
    with pytest.raises(ValidationError, match="expected one of: todo, doing, review, done"):
        TaskStatus.parse("blocked")


def test_default_columns_in_workflow_order():
    assert [c.value for c in DEFAULT_COLUMNS] == list(TaskStatus)
    assert DEFAULT_COLUMNS[1].to_dict()["label"] == "In Progress"


def test_task_from_dict_defaults_and_validation():
    task = Task.from_dict({"title": "  Ship it  ", "tags": '["release"]', "due_date": "2024-05-01"})
    assert task.title == "Ship it"
    assert task.status == TaskStatus.TODO
    assert task.priority == Priority.MED
    assert task.tags == ["release"]
    assert task.due_date == datetime(2024, 5, 1, tzinfo=timezone.utc)

    with pytest.raises(ValidationError):
        Task.from_dict({"title": "   "})
    with pytest.raises(ValidationError):
        Task.from_dict({"title": "x", "priority": "urgent"})


def test_task_to_dict():
    task = Task(title="Docs", tags=["a"])
    data = task.to_dict()
    assert data["status"] == "todo"
    assert data["type"] == "code"
    assert data["due_date"] is None
    assert Task.from_dict(data).id == task.id


def test_project_requires_name():
    with pytest.raises(ValidationError):
        Project.from_dict({"name": ""})


def test_parse_datetime():
    assert parse_datetime(None) is None
    assert parse_datetime("2024-01-02T03:04:05Z").tzinfo is not None
    assert parse_datetime(date(2024, 1, 2)) == datetime(2024, 1, 2, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        parse_datetime("not a date")


def test_prompt_title_truncated():
    short = Prompt(prompt_text="Explain generators")
    assert short.title == "Explain generators"
    long = Prompt(prompt_text="x" * 150)
    assert long.title == "x" * 100 + "..."


def test_template_variables_and_render():
    text = "Review {{ code }} for {{focus}}, then {{code}} again"
    assert extract_variables(text) == ["code", "focus"]

    template = PromptTemplate(name="Review", template_text=text)
    assert template.variables == ["code", "focus"]
    assert template.render({"code": "f()"}) == "Review f() for {{focus}}, then f() again"


def test_priority_accepts_long_form():
    assert Priority.parse("medium") is Priority.MED
    assert Priority.parse(" Medium ") is Priority.MED
    assert Priority.parse("med") is Priority.MED
    assert Task.from_dict({"title": "x", "priority": "medium"}).priority is Priority.MED


def test_non_string_text_fields_rejected():
    with pytest.raises(ValidationError, match="title must be a string"):
        Task.from_dict({"title": 123})
    with pytest.raises(ValidationError, match="name must be a string"):
        Project.from_dict({"name": ["a"]})
    with pytest.raises(ValidationError):
        PromptTemplate.from_dict({"name": "n", "template_text": 7})


def test_task_hours_must_be_numbers():
    task = Task.from_dict({"title": "x", "estimated_hours": "2.5", "actual_hours": ""})
    assert task.estimated_hours == 2.5
    assert task.actual_hours is None
    with pytest.raises(ValidationError, match="estimated_hours must be a number"):
        Task.from_dict({"title": "x", "estimated_hours": "soon"})
    with pytest.raises(ValidationError):
        Task.from_dict({"title": "x", "actual_hours": True})
    with pytest.raises(ValidationError):
        Task.from_dict({"title": "x", "actual_hours": "inf"})
