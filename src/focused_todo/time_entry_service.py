"""Time tracking store and the rules that keep its intervals consistent.

Every write runs the same pipeline, in order:

1. the task must exist;
2. new entries (create/start) need a pending or in-progress task;
3. start and end must fall inside the accepted time window;
4. closed entries last between one minute and one day;
5. a task has at most one open entry;
6. entries of a task never overlap, an open entry reaching forever.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from focused_todo.database import commit_session
from focused_todo.errors import (
    BusinessRuleViolation,
    ConflictError,
    NotFoundError,
    ReferentialViolation,
)
from focused_todo.models import Project, Task, TimeEntry, as_utc, utc_now
from focused_todo.schemas import TimeEntryCreate, TimeEntryUpdate, TimeStatistics

FUTURE_TOLERANCE = timedelta(minutes=5)
MAX_ENTRY_AGE = timedelta(days=30)
MIN_DURATION = timedelta(minutes=1)
MAX_DURATION = timedelta(hours=24)


def validate_interval(
    start_time: datetime, end_time: Optional[datetime], now: Optional[datetime] = None
) -> None:
    """Check temporal and duration bounds of an interval."""
    now = now or utc_now()
    if start_time > now + FUTURE_TOLERANCE:
        raise BusinessRuleViolation(
            "start time cannot be in the future", details={"start_time": "in the future"}
        )
    if start_time < now - MAX_ENTRY_AGE:
        raise BusinessRuleViolation(
            "start time cannot be more than 30 days in the past",
            details={"start_time": "older than 30 days"},
        )
    if end_time is None:
        return
    if end_time < start_time:
        raise BusinessRuleViolation(
            "end time must be after start time", details={"end_time": "before start time"}
        )
    duration = end_time - start_time
    if duration > MAX_DURATION:
        raise BusinessRuleViolation(
            "time entry cannot exceed 24 hours", details={"end_time": "longer than 24 hours"}
        )
    if duration < MIN_DURATION:
        raise BusinessRuleViolation(
            "time entry must be at least 1 minute long",
            details={"end_time": "shorter than 1 minute"},
        )
    if end_time > now + FUTURE_TOLERANCE:
        raise BusinessRuleViolation(
            "end time cannot be in the future", details={"end_time": "in the future"}
        )


def duration_seconds(start_time: datetime, end_time: Optional[datetime]) -> Optional[int]:
    if end_time is None:
        return None
    return max(0, int((end_time - start_time).total_seconds()))


class TimeEntryService:
    def __init__(self, db: Session):
        self.db = db

    # --- lookups ---
    def _require(self, entry_id: int) -> TimeEntry:
        entry = self.db.get(TimeEntry, entry_id)
        if not entry:
            raise NotFoundError("time entry", entry_id)
        return entry

    def _active_for_task(self, task_id: int, exclude_id: Optional[int] = None) -> Optional[TimeEntry]:
        stmt = select(TimeEntry).where(
            TimeEntry.task_id == task_id, TimeEntry.end_time.is_(None)
        )
        if exclude_id is not None:
            stmt = stmt.where(TimeEntry.id != exclude_id)
        stmt = stmt.order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc()).limit(1)
        return self.db.scalars(stmt).first()

    def _overlapping(
        self,
        task_id: int,
        start_time: datetime,
        end_time: Optional[datetime],
        exclude_id: Optional[int] = None,
    ) -> Optional[TimeEntry]:
        stmt = select(TimeEntry).where(
            TimeEntry.task_id == task_id,
            or_(TimeEntry.end_time.is_(None), TimeEntry.end_time > start_time),
        )
        if end_time is not None:
            stmt = stmt.where(TimeEntry.start_time < end_time)
        if exclude_id is not None:
            stmt = stmt.where(TimeEntry.id != exclude_id)
        return self.db.scalars(stmt.limit(1)).first()

    @staticmethod
    def _ensure_trackable(task: Task) -> None:
        if not task.status.is_trackable:
            raise BusinessRuleViolation(
                f"cannot track time on a {task.status.value} task",
                details={"task_id": f"task is {task.status.value}"},
            )

    def _validate(
        self,
        task_id: int,
        start_time: datetime,
        end_time: Optional[datetime],
        exclude_id: Optional[int] = None,
    ) -> None:
        validate_interval(start_time, end_time)
        if end_time is None and self._active_for_task(task_id, exclude_id) is not None:
            raise ConflictError(f"task {task_id} already has an active time entry")
        clash = self._overlapping(task_id, start_time, end_time, exclude_id)
        if clash is not None:
            raise BusinessRuleViolation(
                f"time entry overlaps existing entry {clash.id}",
                details={"start_time": "overlaps another entry"},
            )

    # --- writes ---
    def create_time_entry(self, data: TimeEntryCreate) -> TimeEntry:
        task = self.db.get(Task, data.task_id)
        if not task:
            raise ReferentialViolation(f"task with ID {data.task_id} does not exist")
        self._ensure_trackable(task)
        self._validate(task.id, data.start_time, data.end_time)

        entry = TimeEntry(
            task_id=task.id,
            start_time=data.start_time,
            end_time=data.end_time,
            duration=duration_seconds(data.start_time, data.end_time),
            description=data.description,
        )
        self.db.add(entry)
        commit_session(self.db, "create time entry")
        logger.info(
            "Time entry created",
            extra={"entry_id": entry.id, "task_id": task.id, "active": entry.is_active},
        )
        return entry

    def start_time_entry(self, task_id: int, description: Optional[str] = None) -> TimeEntry:
        task = self.db.get(Task, task_id)
        if not task:
            raise NotFoundError("task", task_id)
        self._ensure_trackable(task)
        if self._active_for_task(task_id) is not None:
            raise ConflictError(f"task {task_id} already has an active time entry")

        entry = TimeEntry(task_id=task_id, start_time=utc_now(), description=description)
        self.db.add(entry)
        commit_session(self.db, "start time entry")
        logger.info("Time entry started", extra={"entry_id": entry.id, "task_id": task_id})
        return entry

    def stop_time_entry(self, task_id: int, description: Optional[str] = None) -> TimeEntry:
        """Close the open entry of a task."""
        entry = self._active_for_task(task_id)
        if entry is None:
            raise NotFoundError(
                "time entry", task_id, message=f"no active time entry for task {task_id}"
            )
        return self._close(entry, description)

    def stop_time_entry_by_id(self, entry_id: int, description: Optional[str] = None) -> TimeEntry:
        entry = self._require(entry_id)
        if not entry.is_active:
            raise BusinessRuleViolation(f"time entry {entry_id} is already stopped")
        return self._close(entry, description)

    def _close(self, entry: TimeEntry, description: Optional[str]) -> TimeEntry:
        # duration bounds do not apply; the elapsed time is recorded as is
        end_time = max(utc_now(), entry.start_time)
        entry.end_time = end_time
        entry.duration = duration_seconds(entry.start_time, end_time)
        if description:
            entry.description = description
        commit_session(self.db, "stop time entry")
        logger.info(
            "Time entry stopped",
            extra={"entry_id": entry.id, "task_id": entry.task_id, "duration": entry.duration},
        )
        return entry

    def update_time_entry(self, entry_id: int, changes: TimeEntryUpdate) -> TimeEntry:
        """Apply the fields present in ``changes`` and re-run the validation pipeline."""
        entry = self._require(entry_id)
        patch = changes.model_dump(exclude_unset=True)
        for required in ("task_id", "start_time"):
            if required in patch and patch[required] is None:
                raise BusinessRuleViolation(
                    f"{required} cannot be cleared", details={required: "required"}
                )

        task_id = patch.get("task_id", entry.task_id)
        start_time = as_utc(patch.get("start_time", entry.start_time))
        end_time = as_utc(patch["end_time"]) if "end_time" in patch else entry.end_time

        if task_id != entry.task_id and not self.db.get(Task, task_id):
            raise ReferentialViolation(f"task with ID {task_id} does not exist")
        self._validate(task_id, start_time, end_time, exclude_id=entry_id)

        entry.task_id = task_id
        entry.start_time = start_time
        entry.end_time = end_time
        entry.duration = duration_seconds(start_time, end_time)
        if "description" in patch:
            entry.description = patch["description"]
        commit_session(self.db, "update time entry")
        logger.info("Time entry updated", extra={"entry_id": entry_id, "fields": sorted(patch)})
        return entry

    def delete_time_entry(self, entry_id: int) -> None:
        entry = self._require(entry_id)
        self.db.delete(entry)
        commit_session(self.db, "delete time entry")
        logger.info("Time entry deleted", extra={"entry_id": entry_id})

    # --- reads ---
    def get_time_entry(self, entry_id: int) -> TimeEntry:
        return self._require(entry_id)

    def get_time_entries_by_task(self, task_id: int) -> List[TimeEntry]:
        if not self.db.get(Task, task_id):
            raise NotFoundError("task", task_id)
        stmt = (
            select(TimeEntry)
            .where(TimeEntry.task_id == task_id)
            .order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc())
        )
        return list(self.db.scalars(stmt))

    def get_time_entries_by_project(self, project_id: int) -> List[TimeEntry]:
        if not self.db.get(Project, project_id):
            raise NotFoundError("project", project_id)
        stmt = (
            select(TimeEntry)
            .join(Task, TimeEntry.task_id == Task.id)
            .where(Task.project_id == project_id)
            .order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc())
        )
        return list(self.db.scalars(stmt))

    def get_active_time_entry(self, task_id: int) -> Optional[TimeEntry]:
        if not self.db.get(Task, task_id):
            raise NotFoundError("task", task_id)
        return self._active_for_task(task_id)

    def get_any_active_time_entry(self) -> Optional[TimeEntry]:
        """The most recently started open entry across all tasks."""
        stmt = (
            select(TimeEntry)
            .where(TimeEntry.end_time.is_(None))
            .order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc())
            .limit(1)
        )
        return self.db.scalars(stmt).first()

    def get_task_time_statistics(self, task_id: int) -> TimeStatistics:
        """Aggregate the closed entries of a task."""
        if not self.db.get(Task, task_id):
            raise NotFoundError("task", task_id)
        total, total_duration, avg_duration, first_entry, last_entry = self.db.execute(
            select(
                func.count(TimeEntry.id),
                func.coalesce(func.sum(TimeEntry.duration), 0),
                func.coalesce(func.avg(TimeEntry.duration), 0),
                func.min(TimeEntry.start_time),
                func.max(TimeEntry.start_time),
            ).where(TimeEntry.task_id == task_id, TimeEntry.end_time.is_not(None))
        ).one()
        return TimeStatistics(
            task_id=task_id,
            total_entries=total,
            total_duration=int(total_duration),
            avg_duration=round(float(avg_duration), 2),
            first_entry=first_entry,
            last_entry=last_entry,
        )
