from __future__ import annotations

import datetime as _dt
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from tasker.errors import ValidationError
from tasker.models.task import STATUSES, Priority, Task, TaskLog, TaskStatus, as_utc, utcnow

DueFilter = Literal["today", "week", "month", "overdue"]
DUE_FILTERS: tuple[DueFilter, ...] = ("today", "week", "month", "overdue")

COLUMN_TITLES: dict[TaskStatus, str] = {
    "todo": "TODO",
    "doing": "DOING",
    "on_hold": "ON HOLD",
    "done": "DONE",
}


@dataclass(slots=True)
class Column:
    status: TaskStatus
    title: str
    tasks: list[Task] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class BoardStats:
    total: int
    completed: int
    in_progress: int
    pending: int
    on_hold: int
    overdue: int
    completion_rate: int
    avg_completion_minutes: int

    def to_wire(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "total": data["total"],
            "completed": data["completed"],
            "inProgress": data["in_progress"],
            "pending": data["pending"],
            "onHold": data["on_hold"],
            "overdue": data["overdue"],
            "completionRate": data["completion_rate"],
            "avgCompletionMinutes": data["avg_completion_minutes"],
        }


def group_columns(tasks: Iterable[Task]) -> list[Column]:
    """Split tasks into the four Kanban columns, keeping collection order within each."""
    columns = {status: Column(status=status, title=COLUMN_TITLES[status]) for status in STATUSES}
    for task in tasks:
        columns[task.status].tasks.append(task)
    return [columns[status] for status in STATUSES]


def is_overdue(task: Task, now: _dt.datetime) -> bool:
    return task.due_date is not None and task.due_date < now and task.status != "done"


def _week_start(now: _dt.datetime) -> _dt.datetime:
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # Weeks start on Sunday; weekday() counts Monday as 0
    return midnight - _dt.timedelta(days=(midnight.weekday() + 1) % 7)


def _matches_due(task: Task, due: DueFilter, now: _dt.datetime) -> bool:
    if due == "overdue":
        return is_overdue(task, now)
    if task.due_date is None:
        return False
    if due == "today":
        return task.due_date.date() == now.date()
    if due == "week":
        start = _week_start(now)
        return start <= task.due_date < start + _dt.timedelta(days=7)
    return (task.due_date.year, task.due_date.month) == (now.year, now.month)


def _matches_query(task: Task, needle: str) -> bool:
    haystack = [task.title, task.description or "", *task.tags]
    return any(needle in text.lower() for text in haystack)


def filter_tasks(
    tasks: Iterable[Task],
    query: str | None = None,
    status: TaskStatus | None = None,
    priority: Priority | None = None,
    due: DueFilter | None = None,
    now: _dt.datetime | None = None,
) -> list[Task]:
    """Apply the board search box and filter dropdowns. Empty criteria match everything."""
    if status is not None and status not in STATUSES:
        raise ValidationError.for_field("status", f"unknown status: {status}")
    if due is not None and due not in DUE_FILTERS:
        raise ValidationError.for_field("due", f"unknown due filter: {due}")
    moment = as_utc(now) if now is not None else utcnow()
    needle = (query or "").strip().lower()

    result: list[Task] = []
    for task in tasks:
        if needle and not _matches_query(task, needle):
            continue
        if status and task.status != status:
            continue
        if priority and task.priority != priority:
            continue
        if due and not _matches_due(task, due, moment):
            continue
        result.append(task)
    return result


def compute_stats(
    tasks: Sequence[Task], logs: Sequence[TaskLog], now: _dt.datetime | None = None
) -> BoardStats:
    moment = as_utc(now) if now is not None else utcnow()
    total = len(tasks)
    completed = sum(1 for t in tasks if t.status == "done")
    rate = round(completed / total * 100) if total else 0
    timed = [log.total_time for log in logs]
    avg_minutes = round(sum(timed) / len(timed) / 60_000) if timed else 0
    return BoardStats(
        total=total,
        completed=completed,
        in_progress=sum(1 for t in tasks if t.status == "doing"),
        pending=sum(1 for t in tasks if t.status == "todo"),
        on_hold=sum(1 for t in tasks if t.status == "on_hold"),
        overdue=sum(1 for t in tasks if is_overdue(t, moment)),
        completion_rate=rate,
        avg_completion_minutes=avg_minutes,
    )


__all__ = [
    "DueFilter",
    "DUE_FILTERS",
    "COLUMN_TITLES",
    "Column",
    "BoardStats",
    "group_columns",
    "is_overdue",
    "filter_tasks",
    "compute_stats",
]
