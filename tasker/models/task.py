from __future__ import annotations

import datetime as _dt
import uuid
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, NonNegativeInt, StringConstraints
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from tasker.errors import ValidationError

TaskStatus = Literal["todo", "doing", "on_hold", "done"]
Priority = Literal["low", "medium", "high"]

STATUSES: tuple[TaskStatus, ...] = ("todo", "doing", "on_hold", "done")
PRIORITIES: tuple[Priority, ...] = ("low", "medium", "high")


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.UTC)


def as_utc(value: _dt.datetime) -> _dt.datetime:
    # Naive values are taken to be UTC so they compare with aware timestamps
    if value.tzinfo is None:
        return value.replace(tzinfo=_dt.UTC)
    return value.astimezone(_dt.UTC)


UtcDatetime = Annotated[_dt.datetime, AfterValidator(as_utc)]
Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class WireModel(BaseModel):
    """Base for persisted models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Subtask(WireModel):
    id: str = Field(default_factory=new_id)
    title: Title
    completed: bool = False


class Task(WireModel):
    """A unit of work on the board.

    Instances are frozen; every mutation produces a new Task so undo snapshots
    can share unchanged entries.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    title: Title
    description: str | None = None
    status: TaskStatus = "todo"
    priority: Priority | None = None
    estimated_time: NonNegativeInt | None = None
    due_date: UtcDatetime | None = None
    tags: list[str] = Field(default_factory=list)
    subtasks: list[Subtask] = Field(default_factory=list)
    start_time: UtcDatetime | None = None
    end_time: UtcDatetime | None = None
    total_time: NonNegativeInt = 0
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)


class TaskLog(WireModel):
    """Immutable record of one completion event."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    task_id: str
    task_name: str
    start_time: UtcDatetime
    end_time: UtcDatetime
    total_time: NonNegativeInt
    completed_at: UtcDatetime


class TaskPatch(WireModel):
    """Fields a caller may change on an existing task.

    ``id``, ``createdAt`` and ``updatedAt`` are store-managed and rejected.
    """

    model_config = ConfigDict(extra="forbid")

    title: Title | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: Priority | None = None
    estimated_time: NonNegativeInt | None = None
    due_date: UtcDatetime | None = None
    tags: list[str] | None = None
    subtasks: list[Subtask] | None = None
    start_time: UtcDatetime | None = None
    end_time: UtcDatetime | None = None
    total_time: NonNegativeInt | None = None


def parse_patch(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a partial update, returning only the fields the caller set.

    Accepts snake_case or camelCase keys; the result is keyed by field name.
    """
    if not fields:
        raise ValidationError("no fields to update")
    try:
        patch = TaskPatch.model_validate(dict(fields))
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc, "invalid task update") from exc
    return {name: getattr(patch, name) for name in patch.model_fields_set}


def apply_patch(task: Task, patch: Mapping[str, Any], *, now: _dt.datetime) -> Task:
    total = patch.get("total_time")
    if total is not None and total < task.total_time:
        raise ValidationError.for_field("totalTime", "total time cannot decrease")
    data = task.model_dump()
    data.update(patch)
    data["updated_at"] = now
    try:
        return Task.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc, "invalid task update") from exc


__all__ = [
    "TaskStatus",
    "Priority",
    "Title",
    "UtcDatetime",
    "STATUSES",
    "PRIORITIES",
    "WireModel",
    "Subtask",
    "Task",
    "TaskLog",
    "TaskPatch",
    "new_id",
    "utcnow",
    "as_utc",
    "parse_patch",
    "apply_patch",
]
