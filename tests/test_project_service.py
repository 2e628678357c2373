"""Project store behaviour against a real SQLite file."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from focused_todo.errors import NotFoundError
from focused_todo.models import Project, Task, TaskStatus, TimeEntry
from focused_todo.project_service import ProjectService
from focused_todo.schemas import ProjectCreate, ProjectUpdate, TaskCreate, TimeEntryCreate
from focused_todo.task_service import TaskService
from focused_todo.time_entry_service import TimeEntryService


def _payload(name: str = "Work", **overrides) -> ProjectCreate:
    data = {"name": name, "description": "desc", "color": "#3B82F6", "icon": "briefcase"}
    data.update(overrides)
    return ProjectCreate(**data)


def test_create_and_get_project(project_service: ProjectService) -> None:
    project = project_service.create_project(_payload())
    assert project.id > 0
    assert project.created_at.tzinfo is not None

    fetched = project_service.get_project(project.id)
    assert fetched.name == "Work"
    assert fetched.color == "#3B82F6"
    assert fetched.icon == "briefcase"


def test_get_missing_project_raises(project_service: ProjectService) -> None:
    with pytest.raises(NotFoundError):
        project_service.get_project(99999)


def test_get_all_projects_newest_first(project_service: ProjectService) -> None:
    first = project_service.create_project(_payload("First"))
    second = project_service.create_project(_payload("Second"))
    ids = [p.id for p in project_service.get_all_projects()]
    assert ids.index(second.id) < ids.index(first.id)


def test_update_project_replaces_fields(project_service: ProjectService) -> None:
    project = project_service.create_project(_payload())
    updated = project_service.update_project(
        project.id,
        ProjectUpdate(name="Home", description=None, color="#00FF00", icon="house"),
    )
    assert updated.name == "Home"
    assert updated.description is None
    assert updated.color == "#00FF00"
    assert updated.updated_at >= project.created_at


def test_update_missing_project_raises(project_service: ProjectService) -> None:
    with pytest.raises(NotFoundError):
        project_service.update_project(424242, ProjectUpdate(**_payload().model_dump()))


def test_delete_project_cascades(session, project_service: ProjectService) -> None:
    project = project_service.create_project(_payload())
    tasks = TaskService(session)
    parent = tasks.create_task(TaskCreate(project_id=project.id, title="Parent"))
    child = tasks.create_task(TaskCreate(project_id=project.id, parent_id=parent.id, title="Child"))
    start = datetime.now(tz=UTC) - timedelta(hours=2)
    entry = TimeEntryService(session).create_time_entry(
        TimeEntryCreate(task_id=child.id, start_time=start, end_time=start + timedelta(minutes=30))
    )

    project_service.delete_project(project.id)
    assert session.scalars(select(Project.id).where(Project.id == project.id)).all() == []
    assert session.scalars(select(Task.id).where(Task.id.in_([parent.id, child.id]))).all() == []
    assert session.scalars(select(TimeEntry.id).where(TimeEntry.id == entry.id)).all() == []
    with pytest.raises(NotFoundError):
        tasks.get_task(child.id)
    with pytest.raises(NotFoundError):
        TimeEntryService(session).get_time_entry(entry.id)


def test_delete_missing_project_raises(project_service: ProjectService) -> None:
    with pytest.raises(NotFoundError):
        project_service.delete_project(31337)


def test_projects_with_task_counts(project_service: ProjectService, task_service: TaskService) -> None:
    busy = project_service.create_project(_payload("Busy"))
    empty = project_service.create_project(_payload("Empty"))
    task_service.create_task(TaskCreate(project_id=busy.id, title="One"))
    task_service.create_task(TaskCreate(project_id=busy.id, title="Two"))

    counts = {row.id: row.task_count for row in project_service.get_projects_with_task_counts()}
    assert counts[busy.id] == 2
    assert counts[empty.id] == 0


def test_project_statistics(
    project_service: ProjectService,
    task_service: TaskService,
    time_entry_service: TimeEntryService,
) -> None:
    project = project_service.create_project(_payload())
    done = task_service.create_task(TaskCreate(project_id=project.id, title="Done"))
    task_service.create_task(TaskCreate(project_id=project.id, title="Todo"))
    start = datetime.now(tz=UTC) - timedelta(hours=3)
    time_entry_service.create_time_entry(
        TimeEntryCreate(task_id=done.id, start_time=start, end_time=start + timedelta(minutes=10))
    )
    task_service.update_task_status(done.id, TaskStatus.COMPLETED)

    stats = project_service.get_project_statistics(project.id)
    assert stats.total_tasks == 2
    assert stats.completed_tasks == 1
    assert stats.pending_tasks == 1
    assert stats.completion_rate == 50.0
    assert stats.total_time_entries == 1
    assert stats.total_tracked_seconds == 600


def test_statistics_for_missing_project(project_service: ProjectService) -> None:
    with pytest.raises(NotFoundError):
        project_service.get_project_statistics(777)
