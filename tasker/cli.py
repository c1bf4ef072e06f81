from __future__ import annotations

import argparse
import datetime as _dt
import json
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tasker.auth import issue_session_token
from tasker.board import DUE_FILTERS, filter_tasks, group_columns
from tasker.config import Settings, load_config
from tasker.errors import AuthorizationError, NotFoundError, ValidationError
from tasker.models.task import PRIORITIES, STATUSES, Task, utcnow
from tasker.observability import use_log_stream
from tasker.reports import RANGE_KINDS, build_report, format_duration, render_pdf, resolve_range
from tasker.store.local import LocalFileAdapter
from tasker.store.remote import RemoteAdapter
from tasker.store.task_store import TaskStore
from tasker.transfer import FORMATS, export_tasks, parse_import

HISTORY_FILE = "history.json"

# Commands that change the board and are recorded for `undo`
_MUTATING = {"add", "move", "start", "pause", "done", "delete", "undo", "import"}


def _iso_datetime(raw: str) -> _dt.datetime:
    try:
        return _dt.datetime.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date/time: {raw}") from exc


def _iso_date(raw: str) -> _dt.date:
    try:
        return _dt.date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date: {raw}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("tasker")
    parser.add_argument("--data-dir", help="Local store directory (default: TASKER_DATA_DIR)")
    parser.add_argument(
        "--remote",
        action="store_true",
        help="Use the HTTP API at TASKER_API_URL instead of the local store",
    )
    parser.add_argument(
        "--log-level", choices=["debug", "info", "warning", "error"], help="Overrides LOG_LEVEL"
    )
    sub = parser.add_subparsers(dest="cmd")

    p_serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p_serve.add_argument("--host", default=os.getenv("TASKER_HOST", "0.0.0.0"))
    p_serve.add_argument("--port", type=int, default=int(os.getenv("TASKER_PORT", "8000")))

    p_token = sub.add_parser("token", help="Print a session token for a user")
    p_token.add_argument("user_id")
    p_token.add_argument("--ttl", type=int, help="Lifetime in seconds (default: session TTL)")

    p_add = sub.add_parser("add", help="Add a task")
    p_add.add_argument("title")
    p_add.add_argument("--description")
    p_add.add_argument("--priority", choices=PRIORITIES)
    p_add.add_argument("--due", type=_iso_datetime, help="Due date, ISO 8601")
    p_add.add_argument("--tag", action="append", dest="tags", default=[])
    p_add.add_argument("--estimate", type=int, help="Estimated minutes")

    p_list = sub.add_parser("list", help="Show the board")
    p_list.add_argument("--search")
    p_list.add_argument("--status", choices=STATUSES)
    p_list.add_argument("--priority", choices=PRIORITIES)
    p_list.add_argument("--due", choices=DUE_FILTERS)
    p_list.add_argument("--json", action="store_true", help="Print tasks as JSON")

    p_move = sub.add_parser("move", help="Move a task to another column")
    p_move.add_argument("task_id")
    p_move.add_argument("status", choices=STATUSES)

    for name, text in (
        ("start", "Start the timer (moves to doing)"),
        ("pause", "Pause the timer (moves to on hold)"),
        ("done", "Complete a task and log the session"),
        ("delete", "Delete a task"),
    ):
        sub.add_parser(name, help=text).add_argument("task_id")

    sub.add_parser("undo", help="Revert the last change")

    p_export = sub.add_parser("export", help="Export tasks")
    p_export.add_argument("--format", choices=FORMATS, default="json")
    p_export.add_argument("--output", help="Write to a file instead of stdout")

    p_import = sub.add_parser("import", help="Import tasks from a JSON or CSV file")
    p_import.add_argument("path")
    p_import.add_argument("--format", choices=FORMATS, help="Default: from the file extension")

    p_report = sub.add_parser("report", help="Write a PDF productivity report")
    p_report.add_argument("--range", choices=RANGE_KINDS, default="weekly", dest="range_kind")
    p_report.add_argument("--start", type=_iso_date)
    p_report.add_argument("--end", type=_iso_date)
    p_report.add_argument("--output", help="PDF path (default: dated file in the cwd)")

    return parser


# ----------------------------
# Store wiring
# ----------------------------


def _open_adapter(args: argparse.Namespace, settings: Settings) -> Any:
    if args.remote:
        return RemoteAdapter(
            settings.api_url, token=settings.api_token, timeout=settings.http_timeout
        )
    return LocalFileAdapter(args.data_dir or settings.data_dir)


def _open_store(adapter: Any, args: argparse.Namespace, settings: Settings) -> TaskStore:
    store = TaskStore(adapter, undo_limit=settings.undo_limit, strict=True)
    store.load()
    if not args.remote:
        store.restore_history(_read_history(_history_path(args, settings)))
    return store


def _history_path(args: argparse.Namespace, settings: Settings) -> Path:
    return Path(args.data_dir or settings.data_dir).expanduser() / HISTORY_FILE


def _read_history(path: Path) -> list[list[Task]]:
    if not path.exists():
        return []
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return [[Task.model_validate(t) for t in snapshot] for snapshot in raw]
    except (OSError, ValueError, TypeError, PydanticValidationError):
        # Unreadable history starts a fresh undo stack
        return []


def _write_history(path: Path, store: TaskStore) -> None:
    payload = [[t.to_wire() for t in snapshot] for snapshot in store.undo_history]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


def _resolve_id(store: TaskStore, ref: str) -> str:
    """Accept a full id or any unique prefix of one."""
    if store.get(ref) is not None:
        return ref
    matches = [t.id for t in store.tasks if t.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise ValidationError.for_field("task_id", f"ambiguous task id prefix: {ref}")
    raise NotFoundError("task", ref)


# ----------------------------
# Commands
# ----------------------------


def _print_board(tasks: list[Task]) -> None:
    for column in group_columns(tasks):
        print(f"{column.title} ({len(column.tasks)})")
        for t in column.tasks:
            parts = [f"  {t.id[:8]}  {t.title}"]
            if t.priority:
                parts.append(f"[{t.priority}]")
            if t.due_date:
                parts.append(f"due {t.due_date.date().isoformat()}")
            if t.total_time:
                parts.append(format_duration(t.total_time))
            if t.tags:
                parts.append(" ".join(f"#{tag}" for tag in t.tags))
            print("  ".join(parts))


def _run_store_command(args: argparse.Namespace, store: TaskStore) -> int:
    cmd = args.cmd
    if cmd == "add":
        task = store.add_task(
            args.title,
            args.description,
            args.priority,
            args.due,
            args.tags,
            estimated_time=args.estimate,
        )
        print(task.id)
    elif cmd == "list":
        tasks = filter_tasks(store.tasks, args.search, args.status, args.priority, args.due)
        if args.json:
            print(export_tasks(tasks, "json"))
        else:
            _print_board(tasks)
    elif cmd == "move":
        store.move_task(_resolve_id(store, args.task_id), args.status)
    elif cmd == "start":
        store.start_timer(_resolve_id(store, args.task_id))
    elif cmd == "pause":
        store.pause_timer(_resolve_id(store, args.task_id))
    elif cmd == "done":
        log = store.complete_task(_resolve_id(store, args.task_id))
        if log is not None:
            print(f"completed {log.task_name} ({format_duration(log.total_time)})")
    elif cmd == "delete":
        store.delete_task(_resolve_id(store, args.task_id))
    elif cmd == "undo":
        if not store.undo():
            sys.stderr.write("nothing to undo\n")
            return 1
    elif cmd == "export":
        content = export_tasks(store.tasks, args.format)
        if args.output:
            Path(args.output).write_text(content, encoding="utf-8")
        else:
            print(content)
    elif cmd == "import":
        path = Path(args.path)
        fmt = args.format or path.suffix.lstrip(".").lower()
        result = parse_import(fmt, path.read_text(encoding="utf-8-sig"))
        store.import_tasks(result.tasks)
        print(f"imported {len(result.tasks)}, rejected {len(result.rejected)}")
        for entry in result.rejected:
            messages = "; ".join(f"{e['field']}: {e['message']}" for e in entry["errors"])
            sys.stderr.write(f"  record {entry['index']}: {messages}\n")
    elif cmd == "report":
        now = utcnow()
        date_range = resolve_range(args.range_kind, now, args.start, args.end)
        report = build_report(store.logs, store.tasks, date_range)
        output = args.output or f"tasker-productivity-report-{now.date().isoformat()}.pdf"
        Path(output).write_bytes(render_pdf(report, generated_at=now))
        print(output)
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from tasker.api.asgi import app

    log_level = os.getenv("LOG_LEVEL", "info").lower()
    config = uvicorn.Config(app, host=args.host, port=args.port, log_level=log_level)
    server = uvicorn.Server(config)
    server.run()
    return 0


def _token(args: argparse.Namespace, settings: Settings) -> int:
    if not settings.auth_enabled:
        sys.stderr.write("error: TASKER_SECRET_KEY is not set\n")
        return 2
    token = issue_session_token(
        secret=settings.secret_key,
        user_id=args.user_id,
        ttl_seconds=args.ttl or settings.session_ttl,
    )
    print(token)
    return 0


def run(argv: list[str] | None = None, settings: Settings | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 0
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level
    settings = settings or load_config()

    adapter: Any = None
    try:
        if args.cmd == "serve":
            return _serve(args)
        if args.cmd == "token":
            return _token(args, settings)
        # stdout carries command output only; log records go to stderr
        with use_log_stream("stderr"):
            adapter = _open_adapter(args, settings)
            store = _open_store(adapter, args, settings)
            code = _run_store_command(args, store)
            if args.cmd in _MUTATING and not args.remote:
                _write_history(_history_path(args, settings), store)
    except ValidationError as exc:
        sys.stderr.write(f"error: {exc}\n")
        for detail in exc.details:
            sys.stderr.write(f"  {detail['field']}: {detail['message']}\n")
        return 2
    except (NotFoundError, ValueError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 2
    except AuthorizationError as exc:
        sys.stderr.write(f"error: {exc}; set TASKER_API_TOKEN\n")
        return 1
    except OSError as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1
    finally:
        if isinstance(adapter, RemoteAdapter):
            adapter.close()

    if store.last_error is not None:
        sys.stderr.write(f"warning: storage error: {store.last_error}\n")
        return 1
    return code


def main(argv: list[str] | None = None) -> None:
    raise SystemExit(run(argv))


if __name__ == "__main__":
    main()
