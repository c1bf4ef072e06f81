from __future__ import annotations

import json
from typing import Any

import pytest

from tasker.observability import Metrics, get_json_logger, use_log_stream, use_request_context


def _parse_json_lines(output: str) -> list[dict[str, Any]]:
    return [json.loads(line) for line in output.strip().splitlines() if line.strip()]


def test_json_logger_redacts_and_formats(capsys: Any) -> None:
    logger = get_json_logger("obs-test")
    logger.setLevel(20)  # INFO
    logger.info(
        "hello",
        extra={
            "event": "task_created",
            "task_id": "t1",
            "attributes": {
                "session_token": "abc.def",
                "Authorization": "Bearer XYZ",
                "safe": "ok",
            },
        },
    )

    out = capsys.readouterr().out
    lines = _parse_json_lines(out)
    assert len(lines) == 1
    rec = lines[0]
    assert rec["msg"] == "hello"
    assert rec["level"] == "info"
    assert rec["event"] == "task_created"
    assert rec["task_id"] == "t1"
    attributes = rec.get("attributes")
    assert isinstance(attributes, dict)
    assert attributes["safe"] == "ok"
    assert attributes["session_token"] == "[REDACTED]"
    assert attributes["Authorization"] == "[REDACTED]"


def test_request_context_enriches_records(capsys: Any) -> None:
    logger = get_json_logger("obs-test-context")
    logger.setLevel(20)
    with use_request_context("req-1", user_id="alice"):
        logger.info("inside")
    logger.info("outside")

    inside, outside = _parse_json_lines(capsys.readouterr().out)
    assert inside["request_id"] == "req-1"
    assert inside["user_id"] == "alice"
    assert "request_id" not in outside


def test_log_stream_is_chosen_per_record(capsys: Any, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOG_STREAM", raising=False)
    logger = get_json_logger("obs-test-stream")
    logger.setLevel(20)
    logger.info("to stdout")
    with use_log_stream("stderr"):
        logger.info("to stderr")

    captured = capsys.readouterr()
    assert [r["msg"] for r in _parse_json_lines(captured.out)] == ["to stdout"]
    assert [r["msg"] for r in _parse_json_lines(captured.err)] == ["to stderr"]

    monkeypatch.setenv("LOG_STREAM", "stderr")
    logger.info("from env")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert [r["msg"] for r in _parse_json_lines(captured.err)] == ["from env"]

def test_metrics_counters_increment_and_snapshot() -> None:
    metrics = Metrics()
    metrics.increment("api_requests", {"method": "GET"}, 2)
    metrics.increment("api_requests", {"method": "GET"})

    snap = metrics.snapshot()
    entry = next(
        e for e in snap if e["name"] == "api_requests" and e["labels"].get("method") == "GET"
    )
    assert entry["value"] == 3
    assert metrics.value("api_requests", {"method": "POST"}) == 0
