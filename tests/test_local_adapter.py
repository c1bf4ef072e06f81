from __future__ import annotations

import json
from pathlib import Path

import pytest

from tasker.errors import PersistenceError
from tasker.models.task import Task, TaskLog
from tasker.store.local import LOGS_KEY, TASKS_KEY, LocalFileAdapter
from tasker.store.task_store import TaskStore
from tests.helpers.store import FakeClock


def test_tasks_survive_a_restart(tmp_path: Path, clock: FakeClock) -> None:
    store = TaskStore(LocalFileAdapter(tmp_path), clock=clock)
    store.load()
    task = store.add_task("persist me", priority="high", tags=["home"])
    store.start_timer(task.id)
    clock.advance(seconds=42)
    store.complete_task(task.id)

    reopened = TaskStore(LocalFileAdapter(tmp_path), clock=clock)
    reopened.load()

    assert reopened.tasks == store.tasks
    assert reopened.logs == store.logs
    assert reopened.tasks[0].total_time == 42_000


def test_documents_use_camel_case_keys(tmp_path: Path) -> None:
    adapter = LocalFileAdapter(tmp_path)
    adapter.load_all()
    adapter.create(Task(title="wire", estimated_time=15))

    raw = json.loads(adapter.path_for(TASKS_KEY).read_text(encoding="utf-8"))
    assert raw[0]["title"] == "wire"
    assert raw[0]["estimatedTime"] == 15
    assert "totalTime" in raw[0]
    assert not adapter.path_for(LOGS_KEY).exists()


def test_invalid_records_are_skipped(tmp_path: Path) -> None:
    good = Task(title="good").to_wire()
    (tmp_path / "tasks.json").write_text(
        json.dumps([good, {"title": ""}, {"status": "weird"}]), encoding="utf-8"
    )

    snapshot = LocalFileAdapter(tmp_path).load_all()

    assert [t.title for t in snapshot.tasks] == ["good"]
    assert snapshot.logs == []


def test_unreadable_document_raises_persistence_error(tmp_path: Path) -> None:
    (tmp_path / "tasks.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        LocalFileAdapter(tmp_path).load_all()


def test_write_does_not_clobber_unloaded_data(tmp_path: Path) -> None:
    first = LocalFileAdapter(tmp_path)
    first.load_all()
    first.create(Task(title="existing"))

    # A fresh adapter that never loaded must still keep existing data
    second = LocalFileAdapter(tmp_path)
    second.create(Task(title="new"))

    titles = [t.title for t in LocalFileAdapter(tmp_path).load_all().tasks]
    assert titles == ["existing", "new"]


def test_replace_all_and_update(tmp_path: Path) -> None:
    adapter = LocalFileAdapter(tmp_path)
    adapter.load_all()
    a = adapter.create(Task(title="a"))
    adapter.create(Task(title="b"))

    updated = adapter.update(a.id, {"status": "doing"})
    assert updated.status == "doing"

    adapter.replace_all([updated])
    assert [t.title for t in LocalFileAdapter(tmp_path).load_all().tasks] == ["a"]

    with pytest.raises(PersistenceError):
        adapter.update("missing", {"status": "done"})


def test_append_log_keeps_order(tmp_path: Path, clock: FakeClock) -> None:
    adapter = LocalFileAdapter(tmp_path)
    for name in ("first", "second"):
        adapter.append_log(
            TaskLog(
                task_id="t1",
                task_name=name,
                start_time=clock.now,
                end_time=clock.now,
                total_time=0,
                completed_at=clock.now,
            )
        )
    assert [log.task_name for log in LocalFileAdapter(tmp_path).load_all().logs] == [
        "first",
        "second",
    ]
