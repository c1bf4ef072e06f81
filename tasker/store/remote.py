from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from tasker.errors import AuthorizationError, PersistenceError
from tasker.models.task import Task, TaskLog, TaskPatch

from .interface import Snapshot

# POST /tasks takes only these; other patchable fields follow in a PUT when they differ
_CREATE_FIELDS = {"title", "description", "priority", "due_date", "tags"}
_PATCHABLE = set(TaskPatch.model_fields)


class RemoteAdapter:
    """Per-user remote store reached through the tasker HTTP API.

    Whole-collection restore is not part of the HTTP surface, so undo is
    unavailable (``supports_undo = False``).
    """

    supports_undo = False

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        if client is None:
            client = httpx.Client(base_url=base_url, timeout=timeout)
        if token:
            client.headers["Authorization"] = f"Bearer {token}"
        self._client = client

    def close(self) -> None:
        self._client.close()

    # ----------------------------
    # PersistenceAdapter
    # ----------------------------
    def load_all(self) -> Snapshot:
        tasks_raw = self._request("GET", "/tasks").json()
        logs_raw = self._request("GET", "/logs").json()
        try:
            tasks = [Task.model_validate(t) for t in tasks_raw]
            logs = [TaskLog.model_validate(entry) for entry in logs_raw]
        except (PydanticValidationError, TypeError) as exc:
            raise PersistenceError(f"unexpected payload from server: {exc}") from exc
        # Server lists newest first; the board keeps creation order
        tasks.sort(key=lambda t: t.created_at)
        return Snapshot(tasks=tasks, logs=logs)

    def create(self, task: Task) -> Task:
        wire = task.to_wire()
        names = _wire_names(_CREATE_FIELDS)
        body = {k: v for k, v in wire.items() if k in names and v is not None}
        created = self._parse_task(self._request("POST", "/tasks", json=body))

        # Carry over state that creation does not accept (imported or templated tasks)
        extra: dict[str, Any] = {}
        for name in sorted(_PATCHABLE - _CREATE_FIELDS):
            value = getattr(task, name)
            if value != getattr(created, name):
                extra[name] = value
        if extra:
            created = self.update(created.id, extra)
        return created

    def update(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        patch = {k: v for k, v in fields.items() if k in _PATCHABLE}
        body = TaskPatch.model_validate(patch).model_dump(
            mode="json", by_alias=True, exclude_unset=True
        )
        return self._parse_task(self._request("PUT", f"/tasks/{task_id}", json=body))

    def delete(self, task_id: str) -> None:
        self._request("DELETE", f"/tasks/{task_id}")

    def append_log(self, log: TaskLog) -> None:
        self._request("POST", "/logs", json=log.to_wire())

    def replace_all(self, tasks: Sequence[Task]) -> None:
        raise PersistenceError("remote store cannot restore a whole collection")

    # ----------------------------
    # Internals
    # ----------------------------
    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise PersistenceError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code == 401:
            raise AuthorizationError("session missing or expired")
        if resp.status_code >= 400:
            detail = resp.text[:200]
            raise PersistenceError(f"{method} {path} returned {resp.status_code}: {detail}")
        return resp

    @staticmethod
    def _parse_task(resp: httpx.Response) -> Task:
        try:
            return Task.model_validate(resp.json())
        except (PydanticValidationError, ValueError) as exc:
            raise PersistenceError(f"unexpected task payload: {exc}") from exc


def _wire_names(names: set[str]) -> set[str]:
    return {Task.model_fields[n].alias or n for n in names}


__all__ = ["RemoteAdapter"]
