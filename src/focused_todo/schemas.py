"""Request and response models for the HTTP API and the services."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from focused_todo.models import TaskStatus, as_utc
from focused_todo.sanitize import (
    sanitize_description,
    sanitize_project_name,
    sanitize_task_title,
    validate_color,
    validate_icon,
)


def _sanitized(func, value: Any) -> Any:
    if isinstance(value, str):
        return func(value)
    return value


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value)


# ---------------------------------------------------------------------------
# Projects


class ProjectPayload(BaseModel):
    name: str = Field(min_length=1, max_length=100, description="Project name")
    description: Optional[str] = Field(
        None, max_length=500, description="Optional project description"
    )
    color: str = Field(description="Hex color in #RRGGBB form")
    icon: str = Field(
        min_length=1, max_length=50, description="Icon identifier (letters, digits, - and _)"
    )

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: Any) -> Any:
        return _sanitized(sanitize_project_name, value)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: Any) -> Any:
        return _sanitized(sanitize_description, value)

    @field_validator("color")
    @classmethod
    def _check_color(cls, value: str) -> str:
        if not validate_color(value):
            raise ValueError("must be a hex color like #3B82F6")
        return value

    @field_validator("icon", mode="before")
    @classmethod
    def _strip_icon(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("icon")
    @classmethod
    def _check_icon(cls, value: str) -> str:
        if not validate_icon(value):
            raise ValueError("may only contain letters, digits, '-' and '_'")
        return value


class ProjectCreate(ProjectPayload):
    pass


class ProjectUpdate(ProjectPayload):
    pass


# ---------------------------------------------------------------------------
# Tasks


class TaskPayload(BaseModel):
    project_id: int = Field(gt=0, description="Owning project ID")
    parent_id: Optional[int] = Field(None, gt=0, description="Parent task ID")
    title: str = Field(min_length=1, max_length=200, description="Task title")
    description: Optional[str] = Field(None, max_length=1000)
    priority: int = Field(0, ge=0, le=10, description="Priority, higher sorts first")
    due_date: Optional[datetime] = Field(None, description="Due date in ISO 8601 format")

    @field_validator("title", mode="before")
    @classmethod
    def _clean_title(cls, value: Any) -> Any:
        return _sanitized(sanitize_task_title, value)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: Any) -> Any:
        return _sanitized(sanitize_description, value)

    @field_validator("due_date")
    @classmethod
    def _due_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc(value)


class TaskCreate(TaskPayload):
    pass


class TaskUpdate(TaskPayload):
    pass


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskPriorityUpdate(BaseModel):
    priority: int = Field(ge=0, le=10)


class TaskOrderItem(BaseModel):
    task_id: int = Field(gt=0)
    priority: int = Field(ge=0)


class ReorderTasksRequest(BaseModel):
    tasks: List[TaskOrderItem] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Time entries


class _TimeEntryText(BaseModel):
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: Any) -> Any:
        return _sanitized(sanitize_description, value)


class TimeEntryCreate(_TimeEntryText):
    task_id: int = Field(gt=0)
    start_time: datetime
    end_time: Optional[datetime] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _times_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc(value)


class TimeEntryUpdate(_TimeEntryText):
    """Partial update; only fields present in the request are applied."""

    task_id: Optional[int] = Field(None, gt=0)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _times_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc(value)


class StartTimeEntryRequest(_TimeEntryText):
    task_id: int = Field(gt=0)


class StopTimeEntryRequest(_TimeEntryText):
    pass


# ---------------------------------------------------------------------------
# Responses


class ProjectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    color: str
    icon: str
    created_at: datetime
    updated_at: datetime


class ProjectWithTaskCount(ProjectOut):
    task_count: int = 0


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    parent_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: int
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TimeEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    description: Optional[str] = None
    created_at: datetime


class ProjectStatistics(BaseModel):
    project_id: int
    total_tasks: int = 0
    pending_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0
    cancelled_tasks: int = 0
    completion_rate: float = 0.0
    total_time_entries: int = 0
    total_tracked_seconds: int = 0


class TaskStatistics(BaseModel):
    project_id: int
    total_tasks: int = 0
    pending_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0
    cancelled_tasks: int = 0
    overdue_tasks: int = 0
    average_priority: float = 0.0


class TimeStatistics(BaseModel):
    task_id: int
    total_entries: int = 0
    total_duration: int = 0
    avg_duration: float = 0.0
    first_entry: Optional[datetime] = None
    last_entry: Optional[datetime] = None
