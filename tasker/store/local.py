from __future__ import annotations

import json
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from tasker.errors import PersistenceError
from tasker.models.task import Task, TaskLog, WireModel
from tasker.observability import get_json_logger

from .interface import Snapshot

TASKS_KEY = "tasks"
LOGS_KEY = "taskLogs"

M = TypeVar("M", bound=WireModel)


class LocalFileAdapter:
    """Local persisted store: two JSON documents under fixed keys.

    Layout under ``data_dir``:
    - ``tasks.json``: the whole task collection
    - ``taskLogs.json``: the whole completion log

    Both are rewritten in full on every change (write to a temp file, then
    atomic rename). Records that fail validation on load are skipped.
    """

    supports_undo = True

    def __init__(self, data_dir: str | os.PathLike[str]) -> None:
        self._dir = Path(data_dir).expanduser()
        self._tasks: list[Task] = []
        self._logs: list[TaskLog] = []
        self._loaded = False
        self._logger = get_json_logger("tasker.store.local")

    @property
    def data_dir(self) -> Path:
        return self._dir

    def path_for(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    # ----------------------------
    # PersistenceAdapter
    # ----------------------------
    def load_all(self) -> Snapshot:
        self._tasks = self._read(TASKS_KEY, Task)
        self._logs = self._read(LOGS_KEY, TaskLog)
        self._loaded = True
        return Snapshot(tasks=list(self._tasks), logs=list(self._logs))

    def create(self, task: Task) -> Task:
        self._ensure_loaded()
        self._tasks.append(task)
        self._write(TASKS_KEY, self._tasks)
        return task

    def update(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        self._ensure_loaded()
        for i, current in enumerate(self._tasks):
            if current.id == task_id:
                data = current.model_dump()
                data.update(fields)
                updated = Task.model_validate(data)
                self._tasks[i] = updated
                self._write(TASKS_KEY, self._tasks)
                return updated
        raise PersistenceError(f"task {task_id} is not in {self.path_for(TASKS_KEY)}")

    def delete(self, task_id: str) -> None:
        self._ensure_loaded()
        self._tasks = [t for t in self._tasks if t.id != task_id]
        self._write(TASKS_KEY, self._tasks)

    def append_log(self, log: TaskLog) -> None:
        self._ensure_loaded()
        self._logs.append(log)
        self._write(LOGS_KEY, self._logs)

    def replace_all(self, tasks: Sequence[Task]) -> None:
        self._ensure_loaded()
        self._tasks = list(tasks)
        self._write(TASKS_KEY, self._tasks)

    # ----------------------------
    # Internals
    # ----------------------------
    def _ensure_loaded(self) -> None:
        # Never rewrite a key before reading it, or existing data would be clobbered
        if not self._loaded:
            self.load_all()

    def _read(self, key: str, model: type[M]) -> list[M]:
        path = self.path_for(key)
        if not path.exists():
            return []
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"failed to read {path}: {exc}") from exc
        if not isinstance(raw, list):
            raise PersistenceError(f"{path} does not hold a JSON array")
        items: list[M] = []
        for index, entry in enumerate(raw):
            try:
                items.append(model.model_validate(entry))
            except PydanticValidationError as exc:
                self._logger.warning(
                    "skipping invalid record",
                    extra={
                        "event": "record_skipped",
                        "attributes": {"key": key, "index": index, "errors": exc.error_count()},
                    },
                )
        return items

    def _write(self, key: str, items: Sequence[WireModel]) -> None:
        path = self.path_for(key)
        tmp = path.with_name(path.name + ".tmp")
        payload = json.dumps([item.to_wire() for item in items], indent=2, ensure_ascii=False)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            raise PersistenceError(f"failed to write {path}: {exc}") from exc


__all__ = ["LocalFileAdapter", "TASKS_KEY", "LOGS_KEY"]
