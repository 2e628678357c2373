"""Time-entry consistency rules: bounds, singleton open entry, overlap, start/stop."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from focused_todo.errors import (
    BusinessRuleViolation,
    ConflictError,
    NotFoundError,
    ReferentialViolation,
)
from focused_todo.models import TaskStatus
from focused_todo.schemas import TaskCreate, TimeEntryCreate, TimeEntryUpdate
from focused_todo.task_service import TaskService
from focused_todo.time_entry_service import TimeEntryService, validate_interval


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _closed(task_id: int, start: datetime, minutes: int = 30, **extra) -> TimeEntryCreate:
    return TimeEntryCreate(
        task_id=task_id, start_time=start, end_time=start + timedelta(minutes=minutes), **extra
    )


# --- interval bounds ---


@pytest.mark.parametrize(
    ("start_offset", "length"),
    [
        (timedelta(minutes=10), None),
        (-timedelta(days=31), None),
        (-timedelta(hours=2), -timedelta(minutes=5)),
        (-timedelta(hours=30), timedelta(hours=25)),
        (-timedelta(hours=2), timedelta(seconds=30)),
        (-timedelta(minutes=2), timedelta(minutes=10)),
    ],
    ids=["future-start", "too-old", "end-before-start", "too-long", "too-short", "future-end"],
)
def test_validate_interval_rejects(start_offset, length) -> None:
    now = _now()
    start = now + start_offset
    end = start + length if length is not None else None
    with pytest.raises(BusinessRuleViolation):
        validate_interval(start, end, now=now)


def test_validate_interval_accepts_boundaries() -> None:
    now = _now()
    validate_interval(now + timedelta(minutes=4), None, now=now)
    validate_interval(now - timedelta(days=29), None, now=now)
    start = now - timedelta(days=2)
    validate_interval(start, start + timedelta(minutes=1), now=now)
    validate_interval(start, start + timedelta(hours=24), now=now)


# --- create ---


def test_create_closed_entry_computes_duration(time_entry_service: TimeEntryService, task) -> None:
    start = _now() - timedelta(hours=2)
    entry = time_entry_service.create_time_entry(_closed(task.id, start, 45, description="focus"))
    assert entry.duration == 45 * 60
    assert entry.description == "focus"
    assert not entry.is_active


def test_create_requires_existing_task(time_entry_service: TimeEntryService) -> None:
    with pytest.raises(ReferentialViolation):
        time_entry_service.create_time_entry(_closed(98765, _now() - timedelta(hours=1)))


@pytest.mark.parametrize("status", [TaskStatus.COMPLETED, TaskStatus.CANCELLED])
def test_create_rejected_for_untrackable_task(
    task_service: TaskService, time_entry_service: TimeEntryService, task, status
) -> None:
    task_service.update_task_status(task.id, status)
    with pytest.raises(BusinessRuleViolation):
        time_entry_service.create_time_entry(_closed(task.id, _now() - timedelta(hours=1)))


def test_overlapping_closed_entries_rejected(time_entry_service: TimeEntryService, task) -> None:
    base = _now() - timedelta(hours=5)
    time_entry_service.create_time_entry(_closed(task.id, base, 60))

    with pytest.raises(BusinessRuleViolation):
        time_entry_service.create_time_entry(_closed(task.id, base + timedelta(minutes=30), 60))
    with pytest.raises(BusinessRuleViolation):
        time_entry_service.create_time_entry(_closed(task.id, base - timedelta(minutes=30), 45))


def test_adjacent_entries_do_not_overlap(time_entry_service: TimeEntryService, task) -> None:
    base = _now() - timedelta(hours=5)
    time_entry_service.create_time_entry(_closed(task.id, base, 60))
    after = time_entry_service.create_time_entry(_closed(task.id, base + timedelta(minutes=60), 30))
    before = time_entry_service.create_time_entry(_closed(task.id, base - timedelta(minutes=30), 30))
    assert after.id and before.id


def test_overlap_is_per_task(task_service: TaskService, time_entry_service: TimeEntryService, project, task) -> None:
    other = task_service.create_task(TaskCreate(project_id=project.id, title="Parallel"))
    base = _now() - timedelta(hours=3)
    time_entry_service.create_time_entry(_closed(task.id, base, 60))
    assert time_entry_service.create_time_entry(_closed(other.id, base, 60)).id


def test_closed_entry_cannot_end_after_open_entry_started(
    time_entry_service: TimeEntryService, task
) -> None:
    open_entry = time_entry_service.start_time_entry(task.id)
    with pytest.raises(BusinessRuleViolation):
        time_entry_service.create_time_entry(
            TimeEntryCreate(
                task_id=task.id,
                start_time=open_entry.start_time - timedelta(minutes=30),
                end_time=open_entry.start_time + timedelta(minutes=1),
            )
        )
    earlier = time_entry_service.create_time_entry(
        _closed(task.id, open_entry.start_time - timedelta(hours=2), 30)
    )
    assert earlier.id


def test_second_open_entry_conflicts(time_entry_service: TimeEntryService, task) -> None:
    time_entry_service.create_time_entry(
        TimeEntryCreate(task_id=task.id, start_time=_now() - timedelta(minutes=20))
    )
    with pytest.raises(ConflictError):
        time_entry_service.create_time_entry(
            TimeEntryCreate(task_id=task.id, start_time=_now() - timedelta(minutes=5))
        )


# --- start / stop ---


def test_start_and_stop(time_entry_service: TimeEntryService, task) -> None:
    started = time_entry_service.start_time_entry(task.id, "deep work")
    assert started.is_active
    assert started.duration is None
    assert time_entry_service.get_active_time_entry(task.id).id == started.id

    stopped = time_entry_service.stop_time_entry(task.id)
    assert stopped.id == started.id
    assert stopped.end_time >= stopped.start_time
    assert stopped.duration >= 0
    assert stopped.description == "deep work"
    assert time_entry_service.get_active_time_entry(task.id) is None


def test_stop_overwrites_description_only_when_given(time_entry_service: TimeEntryService, task) -> None:
    time_entry_service.start_time_entry(task.id, "draft")
    stopped = time_entry_service.stop_time_entry(task.id, "final notes")
    assert stopped.description == "final notes"

    time_entry_service.start_time_entry(task.id, "keep me")
    stopped = time_entry_service.stop_time_entry(task.id, "")
    assert stopped.description == "keep me"


def test_start_twice_conflicts(time_entry_service: TimeEntryService, task) -> None:
    time_entry_service.start_time_entry(task.id)
    with pytest.raises(ConflictError):
        time_entry_service.start_time_entry(task.id)


def test_start_missing_task(time_entry_service: TimeEntryService) -> None:
    with pytest.raises(NotFoundError):
        time_entry_service.start_time_entry(4242)


def test_start_rejected_for_completed_task(
    task_service: TaskService, time_entry_service: TimeEntryService, task
) -> None:
    task_service.update_task_status(task.id, TaskStatus.COMPLETED)
    with pytest.raises(BusinessRuleViolation):
        time_entry_service.start_time_entry(task.id)


def test_stop_without_active_entry(time_entry_service: TimeEntryService, task) -> None:
    with pytest.raises(NotFoundError):
        time_entry_service.stop_time_entry(task.id)


def test_stop_records_full_elapsed_time(time_entry_service: TimeEntryService, task) -> None:
    forgotten = time_entry_service.create_time_entry(
        TimeEntryCreate(task_id=task.id, start_time=_now() - timedelta(hours=25))
    )
    stopped = time_entry_service.stop_time_entry(task.id)
    assert stopped.id == forgotten.id
    assert stopped.duration >= 25 * 3600


def test_stop_by_id(time_entry_service: TimeEntryService, task) -> None:
    started = time_entry_service.start_time_entry(task.id)
    stopped = time_entry_service.stop_time_entry_by_id(started.id)
    assert stopped.end_time is not None
    with pytest.raises(BusinessRuleViolation):
        time_entry_service.stop_time_entry_by_id(started.id)


def test_any_active_entry(time_entry_service: TimeEntryService, task) -> None:
    assert time_entry_service.get_any_active_time_entry() is None
    started = time_entry_service.start_time_entry(task.id)
    assert time_entry_service.get_any_active_time_entry().id == started.id


# --- update ---


def test_update_applies_only_present_fields(time_entry_service: TimeEntryService, task) -> None:
    start = _now() - timedelta(hours=4)
    entry = time_entry_service.create_time_entry(_closed(task.id, start, 30, description="before"))

    updated = time_entry_service.update_time_entry(
        entry.id, TimeEntryUpdate(end_time=start + timedelta(minutes=90))
    )
    assert updated.start_time == start
    assert updated.duration == 90 * 60
    assert updated.description == "before"

    updated = time_entry_service.update_time_entry(entry.id, TimeEntryUpdate(description="after"))
    assert updated.description == "after"
    assert updated.duration == 90 * 60


def test_update_does_not_overlap_itself(time_entry_service: TimeEntryService, task) -> None:
    start = _now() - timedelta(hours=4)
    entry = time_entry_service.create_time_entry(_closed(task.id, start, 60))
    moved = time_entry_service.update_time_entry(
        entry.id, TimeEntryUpdate(start_time=start + timedelta(minutes=10))
    )
    assert moved.duration == 50 * 60


def test_update_rejects_overlap_with_other_entry(time_entry_service: TimeEntryService, task) -> None:
    start = _now() - timedelta(hours=4)
    time_entry_service.create_time_entry(_closed(task.id, start, 60))
    later = time_entry_service.create_time_entry(_closed(task.id, start + timedelta(hours=2), 30))
    with pytest.raises(BusinessRuleViolation):
        time_entry_service.update_time_entry(
            later.id, TimeEntryUpdate(start_time=start + timedelta(minutes=30))
        )


def test_update_reopening_conflicts_with_active_entry(time_entry_service: TimeEntryService, task) -> None:
    closed = time_entry_service.create_time_entry(_closed(task.id, _now() - timedelta(hours=3), 30))
    time_entry_service.start_time_entry(task.id)
    with pytest.raises(ConflictError):
        time_entry_service.update_time_entry(closed.id, TimeEntryUpdate(end_time=None))


def test_update_cannot_clear_start_time(time_entry_service: TimeEntryService, task) -> None:
    entry = time_entry_service.create_time_entry(_closed(task.id, _now() - timedelta(hours=3)))
    with pytest.raises(BusinessRuleViolation):
        time_entry_service.update_time_entry(entry.id, TimeEntryUpdate(start_time=None))


def test_update_missing_entry(time_entry_service: TimeEntryService) -> None:
    with pytest.raises(NotFoundError):
        time_entry_service.update_time_entry(1234, TimeEntryUpdate(description="x"))


# --- reads, delete, statistics ---


def test_listings_newest_first(
    task_service: TaskService, time_entry_service: TimeEntryService, project, task
) -> None:
    other = task_service.create_task(TaskCreate(project_id=project.id, title="Other"))
    base = _now() - timedelta(hours=6)
    old = time_entry_service.create_time_entry(_closed(task.id, base, 30))
    new = time_entry_service.create_time_entry(_closed(task.id, base + timedelta(hours=2), 30))
    elsewhere = time_entry_service.create_time_entry(_closed(other.id, base + timedelta(hours=1), 30))

    assert [e.id for e in time_entry_service.get_time_entries_by_task(task.id)] == [new.id, old.id]
    assert [e.id for e in time_entry_service.get_time_entries_by_project(project.id)] == [
        new.id,
        elsewhere.id,
        old.id,
    ]


def test_listings_for_missing_parents(time_entry_service: TimeEntryService) -> None:
    with pytest.raises(NotFoundError):
        time_entry_service.get_time_entries_by_task(999)
    with pytest.raises(NotFoundError):
        time_entry_service.get_time_entries_by_project(999)


def test_delete_entry(time_entry_service: TimeEntryService, task) -> None:
    entry = time_entry_service.create_time_entry(_closed(task.id, _now() - timedelta(hours=2)))
    time_entry_service.delete_time_entry(entry.id)
    with pytest.raises(NotFoundError):
        time_entry_service.get_time_entry(entry.id)
    with pytest.raises(NotFoundError):
        time_entry_service.delete_time_entry(entry.id)


def test_time_statistics_ignore_open_entries(time_entry_service: TimeEntryService, task) -> None:
    base = _now() - timedelta(hours=6)
    time_entry_service.create_time_entry(_closed(task.id, base, 30))
    time_entry_service.create_time_entry(_closed(task.id, base + timedelta(hours=1), 90))
    time_entry_service.start_time_entry(task.id)

    stats = time_entry_service.get_task_time_statistics(task.id)
    assert stats.total_entries == 2
    assert stats.total_duration == 120 * 60
    assert stats.avg_duration == 60 * 60
    assert stats.first_entry == base
    assert stats.last_entry == base + timedelta(hours=1)


def test_time_statistics_empty(time_entry_service: TimeEntryService, task) -> None:
    stats = time_entry_service.get_task_time_statistics(task.id)
    assert stats.total_entries == 0
    assert stats.first_entry is None
