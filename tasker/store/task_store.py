from __future__ import annotations

import datetime as _dt
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from tasker.errors import AuthorizationError, NotFoundError, PersistenceError, ValidationError
from tasker.models.task import (
    Priority,
    Subtask,
    Task,
    TaskLog,
    TaskStatus,
    apply_patch,
    as_utc,
    new_id,
    parse_patch,
    utcnow,
)
from tasker.observability import get_json_logger, get_metrics

from .interface import PersistenceAdapter

T = TypeVar("T")

DEFAULT_UNDO_LIMIT = 10


class TaskStore:
    """Authoritative in-memory task collection for one user session.

    Every mutation snapshots the whole collection before changing it, applies
    the change in memory, then writes through to the adapter. Write failures
    are logged and counted but never roll back the in-memory change.

    Snapshots are tuples of frozen Task models, so unchanged tasks are shared
    between snapshots rather than copied.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        *,
        undo_limit: int = DEFAULT_UNDO_LIMIT,
        strict: bool = False,
        clock: Callable[[], _dt.datetime] | None = None,
    ) -> None:
        self._adapter = adapter
        self._strict = strict
        self._clock = clock or utcnow
        self._tasks: list[Task] = []
        self._logs: list[TaskLog] = []
        self._undo: deque[tuple[Task, ...]] = deque(maxlen=max(1, undo_limit))
        self._redo: deque[tuple[Task, ...]] = deque(maxlen=max(1, undo_limit))
        self._undo_enabled = bool(getattr(adapter, "supports_undo", False))
        self._logger = get_json_logger("tasker.store")
        self._metrics = get_metrics()
        self.is_hydrated = False
        self.last_error: PersistenceError | AuthorizationError | None = None

    # ----------------------------
    # Loading / reads
    # ----------------------------
    def load(self) -> None:
        """Replace in-memory state with what the adapter holds.

        A persistence failure leaves the store empty. An authorization failure
        also leaves it empty and is re-raised so the caller can sign in again.
        """
        self._tasks = []
        self._logs = []
        self._undo.clear()
        self._redo.clear()
        try:
            snapshot = self._adapter.load_all()
        except AuthorizationError:
            self.is_hydrated = True
            self._logger.warning("load unauthorized", extra={"event": "auth_failed"})
            raise
        except PersistenceError as exc:
            self._record_failure("load", None, exc)
        else:
            self._tasks = list(snapshot.tasks)
            self._logs = list(snapshot.logs)
        self.is_hydrated = True

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    @property
    def logs(self) -> list[TaskLog]:
        return list(self._logs)

    @property
    def can_undo(self) -> bool:
        return self._undo_enabled and bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return self._undo_enabled and bool(self._redo)

    def get(self, task_id: str) -> Task | None:
        index = self._index_of(task_id)
        return None if index is None else self._tasks[index]

    @property
    def undo_history(self) -> list[tuple[Task, ...]]:
        """Undo snapshots, oldest first."""
        return list(self._undo)

    def restore_history(self, snapshots: Iterable[Sequence[Task]]) -> None:
        """Seed the undo stack, e.g. from a previous process. Clears redo."""
        self._undo.clear()
        self._redo.clear()
        if not self._undo_enabled:
            return
        for snapshot in snapshots:
            self._undo.append(tuple(snapshot))

    # ----------------------------
    # Mutations
    # ----------------------------
    def add_task(
        self,
        title: str,
        description: str | None = None,
        priority: Priority | None = None,
        due_date: _dt.datetime | None = None,
        tags: Iterable[str] | None = None,
        *,
        estimated_time: int | None = None,
    ) -> Task:
        now = self._clock()
        clean_title = (title or "").strip()
        if not clean_title:
            raise ValidationError.for_field("title", "task title is required")
        if due_date is not None and as_utc(due_date) < now:
            raise ValidationError.for_field("dueDate", "due date cannot be in the past")
        clean_description = description.strip() if description else None
        try:
            task = Task(
                title=clean_title,
                description=clean_description or None,
                priority=priority,
                estimated_time=estimated_time,
                due_date=due_date,
                tags=[tag for tag in (tags or []) if tag.strip()],
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc, "invalid task") from exc

        self._remember()
        self._tasks.append(task)
        self._logger.info(
            "task created",
            extra={
                "event": "task_created",
                "task_id": task.id,
                "attributes": {"title": task.title},
            },
        )
        self._metrics.increment("tasks_created")
        return self._create_through(task)

    def update_task(self, task_id: str, **fields: Any) -> Task | None:
        """Apply a partial update. Unknown ids raise NotFoundError when strict, else no-op."""
        index = self._index_of(task_id)
        if index is None:
            if self._strict:
                raise NotFoundError("task", task_id)
            return None
        patch = parse_patch(fields)
        now = self._clock()
        updated = apply_patch(self._tasks[index], patch, now=now)

        self._remember()
        self._tasks[index] = updated
        self._logger.info(
            "task updated",
            extra={
                "event": "task_updated",
                "task_id": task_id,
                "attributes": {"fields": sorted(patch)},
            },
        )
        changes = {**patch, "updated_at": now}
        self._persist("update", task_id, lambda: self._adapter.update(task_id, changes))
        return updated

    def move_task(self, task_id: str, new_status: TaskStatus) -> Task | None:
        return self.update_task(task_id, status=new_status)

    def delete_task(self, task_id: str) -> bool:
        index = self._index_of(task_id)
        if index is None:
            if self._strict:
                raise NotFoundError("task", task_id)
            return False
        self._remember()
        del self._tasks[index]
        self._logger.info("task deleted", extra={"event": "task_deleted", "task_id": task_id})
        self._metrics.increment("tasks_deleted")
        self._persist("delete", task_id, lambda: self._adapter.delete(task_id))
        return True

    def start_timer(self, task_id: str) -> Task | None:
        return self.update_task(task_id, status="doing", start_time=self._clock())

    def pause_timer(self, task_id: str) -> Task | None:
        return self.update_task(task_id, status="on_hold")

    def complete_task(self, task_id: str) -> TaskLog | None:
        """Mark a task done, fold the current session into totalTime and log it."""
        task = self.get(task_id)
        if task is None:
            if self._strict:
                raise NotFoundError("task", task_id)
            return None
        now = self._clock()
        session_ms = 0
        if task.start_time is not None:
            session_ms = max(0, (now - task.start_time) // _dt.timedelta(milliseconds=1))

        self.update_task(
            task_id,
            status="done",
            end_time=now,
            total_time=task.total_time + session_ms,
        )
        log = TaskLog(
            task_id=task_id,
            task_name=task.title,
            start_time=task.start_time or now,
            end_time=now,
            total_time=session_ms,
            completed_at=now,
        )
        self._logs.append(log)
        self._logger.info(
            "task completed",
            extra={
                "event": "task_completed",
                "task_id": task_id,
                "attributes": {"session_ms": session_ms, "total_ms": task.total_time + session_ms},
            },
        )
        self._metrics.increment("tasks_completed")
        self._persist("append_log", task_id, lambda: self._adapter.append_log(log))
        return log

    def add_subtask(self, task_id: str, title: str) -> Subtask | None:
        task = self.get(task_id)
        if task is None:
            if self._strict:
                raise NotFoundError("task", task_id)
            return None
        try:
            subtask = Subtask(title=title)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc, "invalid subtask") from exc
        self.update_task(task_id, subtasks=[*task.subtasks, subtask])
        return subtask

    def toggle_subtask(self, task_id: str, subtask_id: str) -> Subtask | None:
        task = self.get(task_id)
        if task is None or not any(s.id == subtask_id for s in task.subtasks):
            if self._strict:
                raise NotFoundError("subtask" if task else "task", subtask_id if task else task_id)
            return None
        toggled: Subtask | None = None
        subtasks: list[Subtask] = []
        for s in task.subtasks:
            if s.id == subtask_id:
                s = s.model_copy(update={"completed": not s.completed})
                toggled = s
            subtasks.append(s)
        self.update_task(task_id, subtasks=subtasks)
        return toggled

    def import_tasks(self, tasks: Sequence[Task]) -> list[Task]:
        """Append a batch of tasks under a single undo snapshot.

        Ids that collide with live tasks (or with each other) are replaced.
        """
        if not tasks:
            return []
        seen = {t.id for t in self._tasks}
        batch: list[Task] = []
        for task in tasks:
            if task.id in seen:
                task = task.model_copy(update={"id": new_id()})
            seen.add(task.id)
            batch.append(task)

        self._remember()
        self._tasks.extend(batch)
        self._logger.info(
            "tasks imported",
            extra={"event": "import_completed", "attributes": {"count": len(batch)}},
        )
        self._metrics.increment("tasks_imported", amount=len(batch))
        return [self._create_through(task) for task in batch]

    # ----------------------------
    # Undo / redo
    # ----------------------------
    def undo(self) -> bool:
        """Restore the collection as it was before the latest mutation.

        Returns False (and changes nothing) when there is nothing to undo or
        the adapter cannot restore a whole collection.
        """
        if not self.can_undo:
            return False
        self._redo.append(tuple(self._tasks))
        self._tasks = list(self._undo.pop())
        self._logger.info("undo", extra={"event": "undo", "attributes": {"depth": len(self._undo)}})
        self._persist("replace_all", None, lambda: self._adapter.replace_all(self._tasks))
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            return False
        self._undo.append(tuple(self._tasks))
        self._tasks = list(self._redo.pop())
        self._logger.info("redo", extra={"event": "redo", "attributes": {"depth": len(self._redo)}})
        self._persist("replace_all", None, lambda: self._adapter.replace_all(self._tasks))
        return True

    # ----------------------------
    # Internals
    # ----------------------------
    def _index_of(self, task_id: str) -> int | None:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        return None

    def _remember(self) -> None:
        if not self._undo_enabled:
            return
        self._undo.append(tuple(self._tasks))
        self._redo.clear()

    def _create_through(self, task: Task) -> Task:
        canonical = self._persist("create", task.id, lambda: self._adapter.create(task))
        if canonical is None or canonical == task:
            return task
        # The backend echoed a different canonical record (e.g. a server-assigned id)
        index = self._index_of(task.id)
        if index is not None:
            self._tasks[index] = canonical
        return canonical

    def _persist(self, op: str, task_id: str | None, call: Callable[[], T]) -> T | None:
        try:
            result = call()
        except (PersistenceError, AuthorizationError) as exc:
            self._record_failure(op, task_id, exc)
            return None
        self.last_error = None
        return result

    def _record_failure(
        self, op: str, task_id: str | None, exc: PersistenceError | AuthorizationError
    ) -> None:
        self.last_error = exc
        self._logger.error(
            "persistence error",
            extra={
                "event": "persistence_error",
                "task_id": task_id,
                "attributes": {"op": op, "error": str(exc)[:200]},
            },
        )
        self._metrics.increment("persistence_errors", {"op": op})


__all__ = ["TaskStore", "DEFAULT_UNDO_LIMIT"]
