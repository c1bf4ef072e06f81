from __future__ import annotations

import datetime as _dt
import json
from collections.abc import Callable, Mapping
from typing import Any, TypeVar, cast

import redis
from pydantic import ValidationError as PydanticValidationError

from tasker.errors import PersistenceError
from tasker.models.task import Task, TaskLog, apply_patch, parse_patch
from tasker.observability import get_json_logger

T = TypeVar("T")


class RedisTaskRepository:
    """Redis-backed per-user task documents.

    Data structures:
    - Hash per task: key `{prefix}:task:{id}` with fields `json` and `user_id`
    - Sorted set per user for ordering by `createdAt`:
      key `{prefix}:user:{user_id}:tasks` with score=created_at epoch seconds, member=task_id
    - List per user of completion logs: key `{prefix}:user:{user_id}:logs`, one JSON per entry

    Redis failures surface as PersistenceError. A validation failure on a
    partial update surfaces as tasker.errors.ValidationError.
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        key_prefix: str = "tasker",
        client: redis.Redis | None = None,
    ) -> None:
        if client is None:
            client = redis.Redis.from_url(url or "redis://localhost:6379/0")
        self._redis: redis.Redis = client
        self._prefix = key_prefix.rstrip(":")
        self._logger = get_json_logger("tasker.store.redis")

    # key helpers
    def _task_key(self, task_id: str) -> str:
        return f"{self._prefix}:task:{task_id}"

    def _tasks_key(self, user_id: str) -> str:
        return f"{self._prefix}:user:{user_id}:tasks"

    def _logs_key(self, user_id: str) -> str:
        return f"{self._prefix}:user:{user_id}:logs"

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except redis.exceptions.RedisError:
            return False

    def list_tasks(self, user_id: str) -> list[Task]:
        ids_bytes = cast(
            list[bytes], self._guard(lambda: self._redis.zrevrange(self._tasks_key(user_id), 0, -1))
        )
        result: list[Task] = []
        for raw_id in ids_bytes:
            task = self.get_task(user_id, raw_id.decode("utf-8"))
            if task is not None:
                result.append(task)
        return result

    def get_task(self, user_id: str, task_id: str) -> Task | None:
        raw = cast(
            list[bytes | None],
            self._guard(lambda: self._redis.hmget(self._task_key(task_id), ["json", "user_id"])),
        )
        payload, owner = raw[0], raw[1]
        if payload is None or owner is None or owner.decode("utf-8") != user_id:
            return None
        try:
            return Task.model_validate(json.loads(payload.decode("utf-8")))
        except (PydanticValidationError, ValueError):
            self._logger.warning(
                "corrupt task document",
                extra={"event": "record_skipped", "task_id": task_id, "user_id": user_id},
            )
            return None

    def create_task(self, user_id: str, task: Task) -> Task:
        def _write() -> None:
            p = self._redis.pipeline()
            p.hset(self._task_key(task.id), mapping={"json": _dump(task), "user_id": user_id})
            p.zadd(self._tasks_key(user_id), {task.id: task.created_at.timestamp()})
            p.execute()

        self._guard(_write)
        return task

    def update_task(
        self, user_id: str, task_id: str, fields: Mapping[str, Any], *, now: _dt.datetime
    ) -> Task | None:
        current = self.get_task(user_id, task_id)
        if current is None:
            return None
        updated = apply_patch(current, parse_patch(fields), now=now)
        key = self._task_key(task_id)
        self._guard(lambda: self._redis.hset(key, mapping={"json": _dump(updated)}))
        return updated

    def delete_task(self, user_id: str, task_id: str) -> bool:
        if self.get_task(user_id, task_id) is None:
            return False

        def _delete() -> list[Any]:
            p = self._redis.pipeline()
            p.delete(self._task_key(task_id))
            p.zrem(self._tasks_key(user_id), task_id)
            return cast(list[Any], p.execute())

        res = self._guard(_delete)
        return bool(sum(int(x) for x in res))

    def list_logs(self, user_id: str) -> list[TaskLog]:
        key = self._logs_key(user_id)
        entries = cast(list[bytes], self._guard(lambda: self._redis.lrange(key, 0, -1)))
        logs: list[TaskLog] = []
        for entry in entries:
            try:
                logs.append(TaskLog.model_validate(json.loads(entry.decode("utf-8"))))
            except (PydanticValidationError, ValueError):
                self._logger.warning(
                    "corrupt log entry", extra={"event": "record_skipped", "user_id": user_id}
                )
        return logs

    def append_log(self, user_id: str, log: TaskLog) -> TaskLog:
        self._guard(lambda: self._redis.rpush(self._logs_key(user_id), _dump(log)))
        return log

    def _guard(self, call: Callable[[], T]) -> T:
        try:
            return call()
        except redis.exceptions.RedisError as exc:
            raise PersistenceError(f"redis error: {exc}") from exc


def _dump(model: Task | TaskLog) -> str:
    return json.dumps(model.to_wire(), separators=(",", ":"))


__all__ = ["RedisTaskRepository"]
