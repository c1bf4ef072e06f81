from __future__ import annotations

import datetime as _dt
import html
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Literal

from tasker.errors import ValidationError
from tasker.models.task import Task, TaskLog, as_utc, utcnow

RangeKind = Literal["today", "yesterday", "weekly", "monthly", "custom"]
RANGE_KINDS: tuple[RangeKind, ...] = ("today", "yesterday", "weekly", "monthly", "custom")

_ONE_MS = _dt.timedelta(milliseconds=1)
_ONE_DAY = _dt.timedelta(days=1)
_TAG_RE = re.compile(r"<[^>]*>")


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive window of completion times."""

    start: _dt.datetime
    end: _dt.datetime
    label: str

    def __contains__(self, moment: _dt.datetime) -> bool:
        return self.start <= as_utc(moment) <= self.end


@dataclass(frozen=True, slots=True)
class ReportRow:
    title: str
    completed_at: _dt.datetime
    total_time: int
    description: str | None = None
    priority: str | None = None
    tags: tuple[str, ...] = ()


@dataclass(slots=True)
class Report:
    label: str
    rows: list[ReportRow] = field(default_factory=list)

    @property
    def total_tasks(self) -> int:
        return len(self.rows)

    @property
    def total_ms(self) -> int:
        return sum(row.total_time for row in self.rows)

    @property
    def total_hours(self) -> float:
        return round(self.total_ms / 3_600_000, 2)

    @property
    def average_hours(self) -> float:
        return round(self.total_hours / self.total_tasks, 2) if self.rows else 0.0


def _midnight(moment: _dt.datetime) -> _dt.datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _day_start(day: _dt.date) -> _dt.datetime:
    return _dt.datetime(day.year, day.month, day.day, tzinfo=_dt.UTC)


def resolve_range(
    kind: str,
    now: _dt.datetime | None = None,
    start: _dt.date | None = None,
    end: _dt.date | None = None,
) -> DateRange:
    """Turn a report range name into concrete UTC bounds.

    Weeks start on Sunday. ``custom`` needs both ``start`` and ``end`` dates
    and covers them inclusively.
    """
    today = _midnight(as_utc(now) if now is not None else utcnow())
    if kind == "today":
        return DateRange(today, today + _ONE_DAY - _ONE_MS, "Today")
    if kind == "yesterday":
        yesterday = today - _ONE_DAY
        return DateRange(yesterday, today - _ONE_MS, "Yesterday")
    if kind == "weekly":
        # weekday() counts Monday as 0
        week_start = today - _dt.timedelta(days=(today.weekday() + 1) % 7)
        return DateRange(week_start, week_start + 7 * _ONE_DAY - _ONE_MS, "This Week")
    if kind == "monthly":
        month_start = today.replace(day=1)
        next_month = (month_start + 32 * _ONE_DAY).replace(day=1)
        return DateRange(month_start, next_month - _ONE_MS, "This Month")
    if kind == "custom":
        if start is None or end is None:
            raise ValidationError.for_field("range", "custom range needs start and end dates")
        if end < start:
            raise ValidationError.for_field("end", "end date is before start date")
        label = f"{start.isoformat()} - {end.isoformat()}"
        return DateRange(_day_start(start), _day_start(end) + _ONE_DAY - _ONE_MS, label)
    raise ValidationError.for_field("range", f"unknown report range: {kind}")


def build_report(
    logs: Iterable[TaskLog], tasks: Sequence[Task], date_range: DateRange
) -> Report:
    """One row per completion inside the range, oldest first.

    Rows pick up description, priority and tags from the task when it still exists.
    """
    by_id = {task.id: task for task in tasks}
    rows: list[ReportRow] = []
    for log in sorted(logs, key=lambda entry: entry.completed_at):
        if log.completed_at not in date_range:
            continue
        task = by_id.get(log.task_id)
        rows.append(
            ReportRow(
                title=log.task_name,
                completed_at=log.completed_at,
                total_time=log.total_time,
                description=task.description if task else None,
                priority=task.priority if task else None,
                tags=tuple(task.tags) if task else (),
            )
        )
    return Report(label=date_range.label, rows=rows)


def format_duration(ms: int) -> str:
    minutes = ms // 1000 // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    return f"{minutes}m"


def strip_html(text: str) -> str:
    return html.unescape(_TAG_RE.sub("", text)).replace("\xa0", " ")


__all__ = [
    "RangeKind",
    "RANGE_KINDS",
    "DateRange",
    "ReportRow",
    "Report",
    "resolve_range",
    "build_report",
    "format_duration",
    "strip_html",
]
