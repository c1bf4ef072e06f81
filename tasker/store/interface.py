from __future__ import annotations

import datetime as _dt
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from tasker.models.task import Task, TaskLog


@dataclass(slots=True)
class Snapshot:
    tasks: list[Task] = field(default_factory=list)
    logs: list[TaskLog] = field(default_factory=list)


class PersistenceAdapter(Protocol):
    """Durable storage behind a TaskStore.

    Implementations raise PersistenceError for I/O failures and
    AuthorizationError when the backing service rejects the session.
    """

    supports_undo: bool

    def load_all(self) -> Snapshot:
        """Return every task and log for the current user."""

    def create(self, task: Task) -> Task:
        """Persist a new task. Returns the canonical copy (ids may be reassigned)."""

    def update(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        """Persist changed fields of an existing task."""

    def delete(self, task_id: str) -> None:
        """Remove a task."""

    def append_log(self, log: TaskLog) -> None:
        """Append one completion record."""

    def replace_all(self, tasks: Sequence[Task]) -> None:
        """Overwrite the whole task collection. Only required when supports_undo."""


class TaskRepository(Protocol):
    """Per-user task storage behind the HTTP API."""

    def ping(self) -> bool:
        """Return True when the backing database is reachable."""

    def list_tasks(self, user_id: str) -> list[Task]:
        """Tasks owned by user_id, newest first."""

    def get_task(self, user_id: str, task_id: str) -> Task | None:
        """Return the task, or None if missing or owned by someone else."""

    def create_task(self, user_id: str, task: Task) -> Task:
        """Store a new task for user_id."""

    def update_task(
        self, user_id: str, task_id: str, fields: Mapping[str, Any], *, now: _dt.datetime
    ) -> Task | None:
        """Validate and apply a partial update. None when the task is not found."""

    def delete_task(self, user_id: str, task_id: str) -> bool:
        """Delete the task. Returns False when it was not found."""

    def list_logs(self, user_id: str) -> list[TaskLog]:
        """Completion logs for user_id in append order."""

    def append_log(self, user_id: str, log: TaskLog) -> TaskLog:
        """Append a completion log for user_id."""


__all__ = ["Snapshot", "PersistenceAdapter", "TaskRepository"]
