"""Shared fixtures: a migrated SQLite database per test plus service factories."""

from __future__ import annotations

from pathlib import Path

import pytest

from focused_todo.database import Database, open_database
from focused_todo.project_service import ProjectService
from focused_todo.schemas import ProjectCreate, TaskCreate
from focused_todo.settings import Settings
from focused_todo.task_service import TaskService
from focused_todo.time_entry_service import TimeEntryService


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        app_data_dir=tmp_path.as_posix(),
        database_path=(tmp_path / "test.db").as_posix(),
        logging_to_file=False,
        logging_level="WARNING",
    )


@pytest.fixture()
def database(settings: Settings):
    db = open_database(settings)
    yield db
    db.close()


@pytest.fixture()
def session(database: Database):
    db = database.SessionLocal()
    yield db
    db.close()


@pytest.fixture()
def project_service(session) -> ProjectService:
    return ProjectService(session)


@pytest.fixture()
def task_service(session) -> TaskService:
    return TaskService(session)


@pytest.fixture()
def time_entry_service(session) -> TimeEntryService:
    return TimeEntryService(session)


@pytest.fixture()
def project(project_service: ProjectService):
    return project_service.create_project(
        ProjectCreate(name="Test Project", description="fixture", color="#FF0000", icon="test-icon")
    )


@pytest.fixture()
def task(task_service: TaskService, project):
    return task_service.create_task(TaskCreate(project_id=project.id, title="Test Task", priority=5))
