"""Export the board to JSON/CSV and import it back with per-record validation."""

from __future__ import annotations

import csv
import datetime as _dt
import io
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import ConfigDict, Field, NonNegativeInt, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from tasker.errors import ValidationError
from tasker.models.task import (
    Priority,
    Subtask,
    Task,
    TaskStatus,
    Title,
    UtcDatetime,
    WireModel,
    new_id,
    utcnow,
)

TransferFormat = Literal["json", "csv"]
FORMATS: tuple[TransferFormat, ...] = ("json", "csv")

CSV_HEADERS = [
    "Title",
    "Description",
    "Status",
    "Priority",
    "Due Date",
    "Tags",
    "Created At",
    "Updated At",
]
_CSV_FIELDS = {
    "title": "title",
    "description": "description",
    "status": "status",
    "priority": "priority",
    "due date": "dueDate",
    "tags": "tags",
    "created at": "createdAt",
    "updated at": "updatedAt",
}
TAG_SEPARATOR = "; "


class TransferRecord(WireModel):
    """One task as it appears in an export file.

    Missing status, priority, tags, subtasks and timestamps take defaults;
    anything present must be valid or the whole record is rejected.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    title: Title
    description: str | None = None
    status: TaskStatus = "todo"
    priority: Priority = "medium"
    estimated_time: NonNegativeInt | None = None
    due_date: UtcDatetime | None = None
    tags: list[str] = Field(default_factory=list)
    subtasks: list[Subtask] = Field(default_factory=list)
    start_time: UtcDatetime | None = None
    end_time: UtcDatetime | None = None
    total_time: NonNegativeInt = 0
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None

    @field_validator(
        "id",
        "description",
        "status",
        "priority",
        "due_date",
        "start_time",
        "end_time",
        "created_at",
        "updated_at",
        mode="before",
    )
    @classmethod
    def _blank_is_missing(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, str) and not value.strip():
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(";") if part.strip()]
        return value

    def to_task(self, now: _dt.datetime) -> Task:
        data = self.model_dump(exclude={"id", "created_at", "updated_at"})
        return Task(
            **data,
            id=self.id or new_id(),
            created_at=self.created_at or now,
            updated_at=self.updated_at or now,
        )


@dataclass(slots=True)
class ImportResult:
    tasks: list[Task] = field(default_factory=list)
    rejected: list[dict[str, Any]] = field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return {"imported": len(self.tasks), "rejected": self.rejected}


# ----------------------------
# Export
# ----------------------------


def export_json(tasks: Iterable[Task]) -> str:
    return json.dumps([t.to_wire() for t in tasks], indent=2, ensure_ascii=False)


def _iso(value: _dt.datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def export_csv(tasks: Iterable[Task]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for t in tasks:
        writer.writerow(
            [
                t.title,
                t.description or "",
                t.status,
                t.priority or "",
                _iso(t.due_date),
                TAG_SEPARATOR.join(t.tags),
                _iso(t.created_at),
                _iso(t.updated_at),
            ]
        )
    return buf.getvalue()


def export_tasks(tasks: Iterable[Task], fmt: str) -> str:
    if fmt == "json":
        return export_json(tasks)
    if fmt == "csv":
        return export_csv(tasks)
    raise ValidationError.for_field("format", f"unsupported format: {fmt}")


# ----------------------------
# Import
# ----------------------------


def _validate_records(records: Iterable[Any], now: _dt.datetime | None) -> ImportResult:
    moment = now or utcnow()
    result = ImportResult()
    for index, raw in enumerate(records):
        if not isinstance(raw, Mapping):
            result.rejected.append(
                {"index": index, "errors": [{"field": "__root__", "message": "not an object"}]}
            )
            continue
        try:
            record = TransferRecord.model_validate(dict(raw))
            task = record.to_task(moment)
        except PydanticValidationError as exc:
            details = ValidationError.from_pydantic(exc).details
            result.rejected.append({"index": index, "errors": details})
            continue
        result.tasks.append(task)
    return result


def parse_json(text: str, now: _dt.datetime | None = None) -> ImportResult:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError.for_field("content", f"invalid JSON: {exc.msg}") from exc
    if isinstance(data, Mapping) and isinstance(data.get("tasks"), list):
        data = data["tasks"]
    if not isinstance(data, list):
        raise ValidationError.for_field("content", "expected a JSON array of tasks")
    return _validate_records(data, now)


def parse_csv(text: str, now: _dt.datetime | None = None) -> ImportResult:
    # Spreadsheet exports often lead with a UTF-8 byte order mark
    reader = csv.DictReader(io.StringIO(text.removeprefix("\ufeff")))
    if not reader.fieldnames:
        raise ValidationError.for_field("content", "CSV has no header row")
    columns = {name: _CSV_FIELDS.get(name.strip().lower()) for name in reader.fieldnames}
    if "title" not in columns.values():
        raise ValidationError.for_field("content", "CSV has no Title column")

    records: list[dict[str, Any]] = []
    for row in reader:
        if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
            continue
        records.append(
            {key: (row.get(name) or "").strip() for name, key in columns.items() if key}
        )
    return _validate_records(records, now)


def parse_import(fmt: str, text: str, now: _dt.datetime | None = None) -> ImportResult:
    if fmt == "json":
        return parse_json(text, now)
    if fmt == "csv":
        return parse_csv(text, now)
    raise ValidationError.for_field("format", f"unsupported format: {fmt}")


__all__ = [
    "TransferFormat",
    "FORMATS",
    "CSV_HEADERS",
    "TransferRecord",
    "ImportResult",
    "export_json",
    "export_csv",
    "export_tasks",
    "parse_json",
    "parse_csv",
    "parse_import",
]
