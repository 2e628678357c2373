from __future__ import annotations

from typing import Iterable, List, Optional

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from focused_todo.database import commit_session
from focused_todo.errors import NotFoundError, ReferentialViolation
from focused_todo.models import Project, Task, TaskOrder, TaskStatus, utc_now
from focused_todo.schemas import TaskCreate, TaskStatistics, TaskUpdate


class TaskService:
    """CRUD, hierarchy checks and ordering for tasks."""

    def __init__(self, db: Session):
        self.db = db

    def _require(self, task_id: int) -> Task:
        task = self.db.get(Task, task_id)
        if not task:
            raise NotFoundError("task", task_id)
        return task

    def _ordered(self, *criteria) -> List[Task]:
        stmt = (
            select(Task)
            .where(*criteria)
            .order_by(Task.priority.desc(), Task.created_at.asc(), Task.id.asc())
        )
        return list(self.db.scalars(stmt))

    def _check_references(
        self, project_id: int, parent_id: Optional[int], task_id: Optional[int] = None
    ) -> None:
        if not self.db.get(Project, project_id):
            raise ReferentialViolation(f"project with ID {project_id} does not exist")
        if parent_id is None:
            return
        if task_id is not None and parent_id == task_id:
            raise ReferentialViolation("task cannot be its own parent")
        parent = self.db.get(Task, parent_id)
        if not parent:
            raise ReferentialViolation(f"parent task with ID {parent_id} does not exist")
        if parent.project_id != project_id:
            raise ReferentialViolation("parent task must belong to the same project")
        if task_id is not None and task_id in self._ancestor_ids(parent_id):
            raise ReferentialViolation("task cannot be moved under one of its own subtasks")

    def _has_subtasks(self, task_id: int) -> bool:
        return self.db.scalar(select(Task.id).where(Task.parent_id == task_id).limit(1)) is not None

    def _ancestor_ids(self, task_id: int) -> set[int]:
        """IDs of the task and every task above it in the hierarchy."""
        chain = (
            select(Task.id, Task.parent_id)
            .where(Task.id == task_id)
            .cte("ancestors", recursive=True)
        )
        parent = select(Task.id, Task.parent_id).join(chain, Task.id == chain.c.parent_id)
        chain = chain.union(parent)
        return set(self.db.scalars(select(chain.c.id)))

    # --- CRUD ---
    def create_task(self, data: TaskCreate) -> Task:
        self._check_references(data.project_id, data.parent_id)
        task = Task(**data.model_dump(), status=TaskStatus.PENDING)
        self.db.add(task)
        commit_session(self.db, "create task")
        logger.info(
            "Task created",
            extra={"task_id": task.id, "project_id": task.project_id, "title": task.title},
        )
        return task

    def get_task(self, task_id: int) -> Task:
        return self._require(task_id)

    def get_tasks_by_project(self, project_id: int) -> List[Task]:
        if not self.db.get(Project, project_id):
            raise NotFoundError("project", project_id)
        return self._ordered(Task.project_id == project_id)

    def get_subtasks(self, parent_id: int) -> List[Task]:
        self._require(parent_id)
        return self._ordered(Task.parent_id == parent_id)

    def update_task(self, task_id: int, data: TaskUpdate) -> Task:
        task = self._require(task_id)
        self._check_references(data.project_id, data.parent_id, task_id=task_id)
        if data.project_id != task.project_id and self._has_subtasks(task_id):
            raise ReferentialViolation("task with subtasks cannot be moved to another project")
        for field, value in data.model_dump().items():
            setattr(task, field, value)
        commit_session(self.db, "update task")
        logger.info("Task updated", extra={"task_id": task_id})
        return task

    def update_task_status(self, task_id: int, status: TaskStatus) -> Task:
        task = self._require(task_id)
        task.apply_status(TaskStatus(status))
        commit_session(self.db, "update task status")
        logger.info("Task status updated", extra={"task_id": task_id, "status": task.status.value})
        return task

    def update_task_priority(self, task_id: int, priority: int) -> Task:
        task = self._require(task_id)
        task.priority = priority
        commit_session(self.db, "update task priority")
        logger.info("Task priority updated", extra={"task_id": task_id, "priority": priority})
        return task

    def reorder_tasks(self, orders: Iterable[TaskOrder]) -> None:
        """Apply all priorities or none of them."""
        orders = list(orders)
        try:
            for order in orders:
                task = self._require(order.task_id)
                task.priority = order.priority
        except NotFoundError:
            self.db.rollback()
            raise
        commit_session(self.db, "reorder tasks")
        logger.info("Tasks reordered", extra={"count": len(orders)})

    def delete_task(self, task_id: int) -> None:
        task = self._require(task_id)
        self.db.delete(task)
        commit_session(self.db, "delete task")
        # subtasks and time entries went with it in the database
        self.db.expire_all()
        logger.info("Task deleted", extra={"task_id": task_id})

    # --- Statistics ---
    def get_task_statistics(self, project_id: int) -> TaskStatistics:
        if not self.db.get(Project, project_id):
            raise NotFoundError("project", project_id)
        open_statuses = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
        overdue = case(
            (
                Task.due_date.is_not(None)
                & (Task.due_date < utc_now())
                & Task.status.in_(open_statuses),
                1,
            ),
            else_=0,
        )
        total, avg_priority, overdue_count = self.db.execute(
            select(
                func.count(Task.id),
                func.coalesce(func.avg(Task.priority), 0),
                func.coalesce(func.sum(overdue), 0),
            ).where(Task.project_id == project_id)
        ).one()
        counts = dict(
            self.db.execute(
                select(Task.status, func.count(Task.id))
                .where(Task.project_id == project_id)
                .group_by(Task.status)
            ).all()
        )
        return TaskStatistics(
            project_id=project_id,
            total_tasks=total,
            pending_tasks=counts.get(TaskStatus.PENDING, 0),
            in_progress_tasks=counts.get(TaskStatus.IN_PROGRESS, 0),
            completed_tasks=counts.get(TaskStatus.COMPLETED, 0),
            cancelled_tasks=counts.get(TaskStatus.CANCELLED, 0),
            overdue_tasks=int(overdue_count),
            average_priority=round(float(avg_priority), 2),
        )
