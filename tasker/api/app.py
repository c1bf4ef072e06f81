from __future__ import annotations

import asyncio
import datetime as _dt
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tasker.auth import session_dependency
from tasker.board import DueFilter, compute_stats, filter_tasks
from tasker.config import Settings, load_config
from tasker.errors import AuthorizationError, NotFoundError, PersistenceError, ValidationError
from tasker.models.task import (
    Priority,
    Task,
    TaskLog,
    TaskStatus,
    Title,
    UtcDatetime,
    WireModel,
    new_id,
    utcnow,
)
from tasker.observability import (
    configure_uvicorn_logging,
    get_json_logger,
    get_metrics,
    use_request_context,
)
from tasker.reports import build_report, render_pdf, resolve_range
from tasker.store.interface import TaskRepository
from tasker.templates import get_template, instantiate, list_templates
from tasker.transfer import export_tasks, parse_import

_LOCATION_PREFIXES = {"body", "query", "path", "header"}


class CreateTaskRequest(WireModel):
    title: Title
    description: str | None = None
    priority: Priority = "medium"
    due_date: UtcDatetime | None = None
    tags: list[str] = Field(default_factory=list)


class ImportRequest(BaseModel):
    format: str
    content: str


def _error(status_code: int, message: str, details: list[dict[str, str]] | None = None) -> Any:
    body: dict[str, Any] = {"error": message}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def _request_error_details(exc: RequestValidationError) -> list[dict[str, str]]:
    details: list[dict[str, str]] = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in _LOCATION_PREFIXES:
            loc = loc[1:]
        details.append(
            {"field": ".".join(loc) or "__root__", "message": str(err.get("msg", "invalid value"))}
        )
    return details


def _attachment(content: str | bytes, media_type: str, filename: str) -> Response:
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=content, media_type=media_type, headers=headers)


def create_app(
    repository: TaskRepository,
    *,
    settings: Settings | None = None,
    clock: Callable[[], _dt.datetime] | None = None,
) -> FastAPI:
    settings = settings or load_config()
    now = clock or utcnow
    app = FastAPI(title="tasker")
    # Configure uvicorn logging at app startup to avoid import-time side effects
    configure_uvicorn_logging()
    logger = get_json_logger("tasker.api")
    metrics = get_metrics()

    current_user = session_dependency(settings, clock=lambda: now().timestamp())
    require_user = Depends(current_user)

    # ----------------------------
    # Error mapping
    # ----------------------------

    @app.exception_handler(RequestValidationError)
    async def _on_request_validation(request: Request, exc: RequestValidationError) -> Any:
        return _error(400, "Validation error", _request_error_details(exc))

    @app.exception_handler(ValidationError)
    async def _on_validation(request: Request, exc: ValidationError) -> Any:
        details = exc.details or [{"field": "__root__", "message": exc.message}]
        return _error(400, "Validation error", details)

    @app.exception_handler(AuthorizationError)
    async def _on_unauthorized(request: Request, exc: AuthorizationError) -> Any:
        return _error(401, "Unauthorized")

    @app.exception_handler(NotFoundError)
    async def _on_not_found(request: Request, exc: NotFoundError) -> Any:
        return _error(404, f"{exc.kind.capitalize()} not found")

    @app.exception_handler(PersistenceError)
    async def _on_persistence(request: Request, exc: PersistenceError) -> Any:
        logger.error(
            "storage failure",
            extra={
                "event": "api_error",
                "path": request.url.path,
                "attributes": {"error": str(exc)[:200]},
            },
        )
        metrics.increment("api_errors", {"kind": "persistence"})
        return _error(500, "Internal server error")

    @app.exception_handler(Exception)
    async def _on_unexpected(request: Request, exc: Exception) -> Any:
        logger.error(
            "unhandled error",
            extra={
                "event": "api_error",
                "path": request.url.path,
                "attributes": {"error": type(exc).__name__},
            },
        )
        metrics.increment("api_errors", {"kind": "unexpected"})
        return _error(500, "Internal server error")

    @app.middleware("http")
    async def _request_context(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        started = time.perf_counter()
        with use_request_context(request_id):
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "api request",
                extra={
                    "event": "api_request",
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        metrics.increment(
            "api_requests", {"method": request.method, "status": str(response.status_code)}
        )
        return response

    # ----------------------------
    # Probes
    # ----------------------------

    @app.get("/health")
    async def health() -> dict[str, str]:  # lightweight healthcheck endpoint
        return {"status": "ok"}

    @app.get("/ready")
    async def ready() -> dict[str, str]:
        if not repository.ping():
            logger.error(
                "repository not ready",
                extra={"event": "api_error", "path": "/ready"},
            )
            metrics.increment("api_ready_errors")
            raise HTTPException(status_code=503, detail="repository not ready")
        return {"status": "ok"}

    # ----------------------------
    # Tasks
    # ----------------------------

    @app.get("/tasks")
    async def list_tasks(
        user_id: str = require_user,
        q: str | None = None,
        status: TaskStatus | None = None,
        priority: Priority | None = None,
        due: DueFilter | None = None,
    ) -> list[dict[str, Any]]:
        tasks = repository.list_tasks(user_id)
        if q or status or priority or due:
            tasks = filter_tasks(tasks, q, status, priority, due, now=now())
        return [t.to_wire() for t in tasks]

    @app.post("/tasks", status_code=201)
    async def create_task(body: CreateTaskRequest, user_id: str = require_user) -> dict[str, Any]:
        moment = now()
        task = Task(
            title=body.title,
            description=body.description,
            priority=body.priority,
            due_date=body.due_date,
            tags=body.tags,
            created_at=moment,
            updated_at=moment,
        )
        created = repository.create_task(user_id, task)
        logger.info("task created", extra={"event": "task_created", "task_id": created.id})
        metrics.increment("tasks_created")
        return created.to_wire()

    @app.get("/tasks/{task_id}")
    async def get_task(task_id: str, user_id: str = require_user) -> dict[str, Any]:
        task = repository.get_task(user_id, task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task.to_wire()

    @app.put("/tasks/{task_id}")
    async def update_task(
        task_id: str, body: dict[str, Any], user_id: str = require_user
    ) -> dict[str, Any]:
        updated = repository.update_task(user_id, task_id, body, now=now())
        if updated is None:
            raise NotFoundError("task", task_id)
        logger.info(
            "task updated",
            extra={
                "event": "task_updated",
                "task_id": task_id,
                "attributes": {"fields": sorted(body)},
            },
        )
        return updated.to_wire()

    @app.delete("/tasks/{task_id}")
    async def delete_task(task_id: str, user_id: str = require_user) -> dict[str, str]:
        if not repository.delete_task(user_id, task_id):
            raise NotFoundError("task", task_id)
        logger.info("task deleted", extra={"event": "task_deleted", "task_id": task_id})
        metrics.increment("tasks_deleted")
        return {"message": "Task deleted successfully"}

    # ----------------------------
    # Logs and stats
    # ----------------------------

    @app.get("/logs")
    async def list_logs(user_id: str = require_user) -> list[dict[str, Any]]:
        return [log.to_wire() for log in repository.list_logs(user_id)]

    @app.post("/logs", status_code=201)
    async def append_log(log: TaskLog, user_id: str = require_user) -> dict[str, Any]:
        stored = repository.append_log(user_id, log)
        logger.info("task completed", extra={"event": "task_completed", "task_id": log.task_id})
        metrics.increment("tasks_completed")
        return stored.to_wire()

    @app.get("/stats")
    async def stats(user_id: str = require_user) -> dict[str, Any]:
        tasks = repository.list_tasks(user_id)
        logs = repository.list_logs(user_id)
        return compute_stats(tasks, logs, now()).to_wire()

    # ----------------------------
    # Export / import
    # ----------------------------

    @app.get("/export")
    async def export(
        user_id: str = require_user, fmt: str = Query("json", alias="format")
    ) -> Response:
        content = export_tasks(repository.list_tasks(user_id), fmt)
        media_type = "text/csv" if fmt == "csv" else "application/json"
        filename = f"tasker-tasks-{now().date().isoformat()}.{fmt}"
        return _attachment(content, media_type, filename)

    @app.post("/import")
    async def import_tasks(body: ImportRequest, user_id: str = require_user) -> dict[str, Any]:
        result = parse_import(body.format, body.content, now())
        for task in result.tasks:
            # Task keys are global, so imported ids never overwrite existing documents
            repository.create_task(user_id, task.model_copy(update={"id": new_id()}))
        logger.info(
            "tasks imported",
            extra={
                "event": "import_completed",
                "attributes": {
                    "format": body.format,
                    "imported": len(result.tasks),
                    "rejected": len(result.rejected),
                },
            },
        )
        metrics.increment("tasks_imported", amount=len(result.tasks))
        return result.to_wire()

    # ----------------------------
    # Templates
    # ----------------------------

    @app.get("/templates")
    async def templates(user_id: str = require_user) -> list[dict[str, Any]]:
        return [template.to_wire() for template in list_templates()]

    @app.post("/templates/{template_id}", status_code=201)
    async def apply_template(template_id: str, user_id: str = require_user) -> list[dict[str, Any]]:
        template = get_template(template_id)
        created = [repository.create_task(user_id, t) for t in instantiate(template, now())]
        logger.info(
            "template applied",
            extra={
                "event": "import_completed",
                "attributes": {"template": template.id, "imported": len(created)},
            },
        )
        metrics.increment("tasks_imported", amount=len(created))
        return [t.to_wire() for t in created]

    # ----------------------------
    # Reports
    # ----------------------------

    @app.get("/reports/pdf")
    async def report_pdf(
        user_id: str = require_user,
        kind: str = Query("weekly", alias="range"),
        start: _dt.date | None = None,
        end: _dt.date | None = None,
    ) -> Response:
        moment = now()
        date_range = resolve_range(kind, moment, start, end)
        report = build_report(
            repository.list_logs(user_id), repository.list_tasks(user_id), date_range
        )
        data = await asyncio.to_thread(render_pdf, report, generated_at=moment)
        filename = f"tasker-productivity-report-{moment.date().isoformat()}.pdf"
        return _attachment(data, "application/pdf", filename)

    return app


__all__ = ["create_app", "CreateTaskRequest", "ImportRequest"]
