from __future__ import annotations

from typing import List

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from focused_todo.database import commit_session
from focused_todo.errors import NotFoundError
from focused_todo.models import Project, Task, TaskStatus, TimeEntry
from focused_todo.schemas import (
    ProjectCreate,
    ProjectOut,
    ProjectStatistics,
    ProjectUpdate,
    ProjectWithTaskCount,
)


class ProjectService:
    def __init__(self, db: Session):
        self.db = db

    def _require(self, project_id: int) -> Project:
        project = self.db.get(Project, project_id)
        if not project:
            raise NotFoundError("project", project_id)
        return project

    def create_project(self, data: ProjectCreate) -> Project:
        project = Project(**data.model_dump())
        self.db.add(project)
        commit_session(self.db, "create project")
        logger.info("Project created", extra={"project_id": project.id, "name": project.name})
        return project

    def get_project(self, project_id: int) -> Project:
        return self._require(project_id)

    def get_all_projects(self) -> List[Project]:
        stmt = select(Project).order_by(Project.created_at.desc(), Project.id.desc())
        return list(self.db.scalars(stmt))

    def update_project(self, project_id: int, data: ProjectUpdate) -> Project:
        project = self._require(project_id)
        for field, value in data.model_dump().items():
            setattr(project, field, value)
        commit_session(self.db, "update project")
        logger.info("Project updated", extra={"project_id": project_id})
        return project

    def delete_project(self, project_id: int) -> None:
        """Delete a project; tasks and their time entries go with it."""
        project = self._require(project_id)
        self.db.delete(project)
        commit_session(self.db, "delete project")
        self.db.expire_all()
        logger.info("Project deleted", extra={"project_id": project_id})

    def get_projects_with_task_counts(self) -> List[ProjectWithTaskCount]:
        stmt = (
            select(Project, func.count(Task.id).label("task_count"))
            .outerjoin(Task, Task.project_id == Project.id)
            .group_by(Project.id)
            .order_by(Project.created_at.desc(), Project.id.desc())
        )
        return [
            ProjectWithTaskCount(
                **ProjectOut.model_validate(project).model_dump(), task_count=count
            )
            for project, count in self.db.execute(stmt).all()
        ]

    def get_project_statistics(self, project_id: int) -> ProjectStatistics:
        self._require(project_id)
        status_rows = self.db.execute(
            select(Task.status, func.count(Task.id))
            .where(Task.project_id == project_id)
            .group_by(Task.status)
        ).all()
        counts = {status: count for status, count in status_rows}
        total = sum(counts.values())
        completed = counts.get(TaskStatus.COMPLETED, 0)

        entries, tracked = self.db.execute(
            select(func.count(TimeEntry.id), func.coalesce(func.sum(TimeEntry.duration), 0))
            .join(Task, TimeEntry.task_id == Task.id)
            .where(Task.project_id == project_id)
        ).one()

        return ProjectStatistics(
            project_id=project_id,
            total_tasks=total,
            pending_tasks=counts.get(TaskStatus.PENDING, 0),
            in_progress_tasks=counts.get(TaskStatus.IN_PROGRESS, 0),
            completed_tasks=completed,
            cancelled_tasks=counts.get(TaskStatus.CANCELLED, 0),
            completion_rate=round(completed / total * 100, 2) if total else 0.0,
            total_time_entries=entries,
            total_tracked_seconds=int(tracked),
        )
