from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from tasker.api.app import create_app
from tasker.auth import DEV_USER, verify_session_token
from tasker.cli import HISTORY_FILE, run
from tasker.config import Settings, load_config
from tasker.store.local import LocalFileAdapter
from tasker.store.remote import RemoteAdapter
from tests.helpers.store import InMemoryRepository


def _output(capsys: Any) -> list[str]:
    return capsys.readouterr().out.splitlines()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return load_config({"TASKER_DATA_DIR": str(tmp_path), "TASKER_SECRET_KEY": ""})


def _tasks(capsys: Any, settings: Settings) -> list[dict[str, Any]]:
    capsys.readouterr()
    assert run(["list", "--json"], settings) == 0
    return json.loads("\n".join(_output(capsys)))


def _add(capsys: Any, settings: Settings, *argv: str) -> str:
    capsys.readouterr()
    assert run(["add", *argv], settings) == 0
    return _output(capsys)[-1]


def test_add_then_list(capsys: Any, settings: Settings) -> None:
    task_id = _add(capsys, settings, "Write docs", "--priority", "high", "--tag", "docs")

    tasks = _tasks(capsys, settings)
    assert [(t["id"], t["title"], t["priority"], t["tags"]) for t in tasks] == [
        (task_id, "Write docs", "high", ["docs"])
    ]

    assert run(["list"], settings) == 0
    board = _output(capsys)
    assert board[0] == "TODO (1)"
    assert "DONE (0)" in board
    assert any("Write docs" in line and "#docs" in line for line in board)


def test_timer_commands_accept_id_prefix(capsys: Any, settings: Settings) -> None:
    task_id = _add(capsys, settings, "Timed")

    assert run(["start", task_id[:6]], settings) == 0
    assert _tasks(capsys, settings)[0]["status"] == "doing"

    assert run(["pause", task_id[:6]], settings) == 0
    assert _tasks(capsys, settings)[0]["status"] == "on_hold"

    capsys.readouterr()
    assert run(["done", task_id], settings) == 0
    assert _output(capsys)[-1].startswith("completed Timed (")
    assert _tasks(capsys, settings)[0]["status"] == "done"

    logs = LocalFileAdapter(settings.data_dir).load_all().logs
    assert [log.task_id for log in logs] == [task_id]


def test_undo_survives_between_runs(capsys: Any, settings: Settings) -> None:
    _add(capsys, settings, "keep")
    _add(capsys, settings, "discard")
    assert (Path(settings.data_dir) / HISTORY_FILE).exists()

    assert run(["undo"], settings) == 0
    assert [t["title"] for t in _tasks(capsys, settings)] == ["keep"]


def test_undo_with_empty_history_fails(capsys: Any, settings: Settings) -> None:
    assert run(["undo"], settings) == 1
    assert "nothing to undo" in capsys.readouterr().err


def test_move_and_delete(capsys: Any, settings: Settings) -> None:
    task_id = _add(capsys, settings, "Movable")
    assert run(["move", task_id, "on_hold"], settings) == 0
    assert _tasks(capsys, settings)[0]["status"] == "on_hold"

    assert run(["delete", task_id], settings) == 0
    assert _tasks(capsys, settings) == []


def test_errors_map_to_exit_codes(capsys: Any, settings: Settings) -> None:
    assert run(["add", "   "], settings) == 2
    assert "title" in capsys.readouterr().err

    assert run(["move", "does-not-exist", "done"], settings) == 2
    assert "not found" in capsys.readouterr().err

    assert run(["add", "late", "--due", "2000-01-01T00:00:00+00:00"], settings) == 2


def test_export_and_import_files(capsys: Any, settings: Settings, tmp_path: Path) -> None:
    _add(capsys, settings, "Exported", "--tag", "a", "--tag", "b")
    target = tmp_path / "board.csv"
    assert run(["export", "--format", "csv", "--output", str(target)], settings) == 0
    assert target.read_text(encoding="utf-8").startswith('"Title"')

    broken = tmp_path / "extra.json"
    broken.write_text(json.dumps([{"title": "Imported"}, {"title": ""}]), encoding="utf-8")

    capsys.readouterr()
    assert run(["import", str(target)], settings) == 0
    assert _output(capsys)[-1] == "imported 1, rejected 0"
    assert run(["import", str(broken)], settings) == 0
    captured = capsys.readouterr()
    assert "imported 1, rejected 1" in captured.out
    assert "record 1" in captured.err

    titles = sorted(t["title"] for t in _tasks(capsys, settings))
    assert titles == ["Exported", "Exported", "Imported"]


def test_report_writes_pdf(capsys: Any, settings: Settings, tmp_path: Path) -> None:
    task_id = _add(capsys, settings, "Reported")
    assert run(["done", task_id], settings) == 0

    target = tmp_path / "report.pdf"
    assert run(["report", "--range", "today", "--output", str(target)], settings) == 0
    assert target.read_bytes().startswith(b"%PDF")


def test_token_requires_secret(capsys: Any) -> None:
    assert run(["token", "alice"], load_config({"TASKER_SECRET_KEY": ""})) == 2

    secured = load_config({"TASKER_SECRET_KEY": "cli-secret"})
    capsys.readouterr()
    assert run(["token", "alice", "--ttl", "120"], secured) == 0
    token = _output(capsys)[-1]
    assert verify_session_token(token=token, secret="cli-secret") == "alice"


def test_stdout_holds_only_command_output(capsys: Any, settings: Settings) -> None:
    capsys.readouterr()
    assert run(["add", "x"], settings) == 0
    captured = capsys.readouterr()
    assert captured.out.strip()
    task_id = captured.out.strip()
    assert captured.out == task_id + "\n"
    assert '"task_created"' in captured.err

    assert run(["done", task_id], settings) == 0
    captured = capsys.readouterr()
    assert captured.out.startswith("completed x (")
    assert len(captured.out.splitlines()) == 1
    assert '"task_completed"' in captured.err


def test_exported_json_on_stdout_imports_cleanly(
    capsys: Any, settings: Settings, tmp_path: Path
) -> None:
    _add(capsys, settings, "Piped", "--tag", "shell")
    capsys.readouterr()
    assert run(["export"], settings) == 0
    exported = capsys.readouterr().out
    assert [t["title"] for t in json.loads(exported)] == ["Piped"]

    dump = tmp_path / "dump.json"
    dump.write_text(exported, encoding="utf-8")
    fresh = load_config({"TASKER_DATA_DIR": str(tmp_path / "fresh"), "TASKER_SECRET_KEY": ""})
    assert run(["import", str(dump)], fresh) == 0
    assert capsys.readouterr().out == "imported 1, rejected 0\n"
    assert [(t["title"], t["tags"]) for t in _tasks(capsys, fresh)] == [("Piped", ["shell"])]


def test_import_accepts_csv_with_byte_order_mark(
    capsys: Any, settings: Settings, tmp_path: Path
) -> None:
    sheet = tmp_path / "sheet.csv"
    sheet.write_bytes("Title,Priority\nFrom a spreadsheet,low\n".encode("utf-8-sig"))

    capsys.readouterr()
    assert run(["import", str(sheet)], settings) == 0
    assert _output(capsys) == ["imported 1, rejected 0"]
    assert [(t["title"], t["priority"]) for t in _tasks(capsys, settings)] == [
        ("From a spreadsheet", "low")
    ]


def test_remote_adapter_is_closed_after_command(
    capsys: Any, monkeypatch: pytest.MonkeyPatch
) -> None:
    repo = InMemoryRepository()
    app_settings = load_config({"TASKER_SECRET_KEY": ""})
    closed: list[bool] = []

    class _ClosingAdapter(RemoteAdapter):
        def __init__(self, base_url: str, **kwargs: Any) -> None:
            super().__init__(client=TestClient(create_app(repo, settings=app_settings)))

        def close(self) -> None:
            closed.append(True)
            super().close()

    monkeypatch.setattr("tasker.cli.RemoteAdapter", _ClosingAdapter)

    capsys.readouterr()
    assert run(["--remote", "add", "Remote"], app_settings) == 0
    assert closed == [True]
    assert [t.title for t in repo.list_tasks(DEV_USER)] == ["Remote"]

    assert run(["--remote", "delete", "missing"], app_settings) == 2
    assert closed == [True, True]
