from __future__ import annotations

import datetime as _dt
from collections.abc import Mapping, Sequence
from typing import Any

from tasker.errors import PersistenceError
from tasker.models.task import Task, TaskLog, apply_patch, parse_patch
from tasker.store.interface import Snapshot


class FakeClock:
    def __init__(self, start: _dt.datetime | None = None) -> None:
        self.now = start or _dt.datetime(2025, 3, 4, 9, 0, tzinfo=_dt.UTC)

    def __call__(self) -> _dt.datetime:
        return self.now

    def advance(self, **delta: float) -> _dt.datetime:
        self.now = self.now + _dt.timedelta(**delta)
        return self.now


class InMemoryAdapter:
    """PersistenceAdapter keeping everything in lists, with switchable failures."""

    def __init__(
        self,
        tasks: Sequence[Task] = (),
        logs: Sequence[TaskLog] = (),
        *,
        supports_undo: bool = True,
    ) -> None:
        self.supports_undo = supports_undo
        self.tasks: list[Task] = list(tasks)
        self.logs: list[TaskLog] = list(logs)
        self.fail = False
        self.calls: list[str] = []

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if self.fail:
            raise PersistenceError(f"{op} failed")

    def load_all(self) -> Snapshot:
        self._check("load_all")
        return Snapshot(tasks=list(self.tasks), logs=list(self.logs))

    def create(self, task: Task) -> Task:
        self._check("create")
        self.tasks.append(task)
        return task

    def update(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        self._check("update")
        for i, t in enumerate(self.tasks):
            if t.id == task_id:
                self.tasks[i] = Task.model_validate({**t.model_dump(), **fields})
                return self.tasks[i]
        raise PersistenceError(f"unknown task {task_id}")

    def delete(self, task_id: str) -> None:
        self._check("delete")
        self.tasks = [t for t in self.tasks if t.id != task_id]

    def append_log(self, log: TaskLog) -> None:
        self._check("append_log")
        self.logs.append(log)

    def replace_all(self, tasks: Sequence[Task]) -> None:
        self._check("replace_all")
        self.tasks = list(tasks)


class InMemoryRepository:
    """TaskRepository keyed by user, newest first like the Redis one."""

    def __init__(self) -> None:
        self.tasks: dict[str, dict[str, Task]] = {}
        self.logs: dict[str, list[TaskLog]] = {}
        self.healthy = True
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise PersistenceError("storage offline")

    def ping(self) -> bool:
        return self.healthy

    def list_tasks(self, user_id: str) -> list[Task]:
        self._check()
        owned = self.tasks.get(user_id, {}).values()
        return sorted(owned, key=lambda t: t.created_at, reverse=True)

    def get_task(self, user_id: str, task_id: str) -> Task | None:
        self._check()
        return self.tasks.get(user_id, {}).get(task_id)

    def create_task(self, user_id: str, task: Task) -> Task:
        self._check()
        self.tasks.setdefault(user_id, {})[task.id] = task
        return task

    def update_task(
        self, user_id: str, task_id: str, fields: Mapping[str, Any], *, now: _dt.datetime
    ) -> Task | None:
        current = self.get_task(user_id, task_id)
        if current is None:
            return None
        updated = apply_patch(current, parse_patch(fields), now=now)
        self.tasks[user_id][task_id] = updated
        return updated

    def delete_task(self, user_id: str, task_id: str) -> bool:
        self._check()
        return self.tasks.get(user_id, {}).pop(task_id, None) is not None

    def list_logs(self, user_id: str) -> list[TaskLog]:
        self._check()
        return list(self.logs.get(user_id, []))

    def append_log(self, user_id: str, log: TaskLog) -> TaskLog:
        self._check()
        self.logs.setdefault(user_id, []).append(log)
        return log
