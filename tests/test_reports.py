from __future__ import annotations

import datetime as _dt

import pymupdf
import pytest

from tasker.errors import ValidationError
from tasker.models.task import Task, TaskLog
from tasker.observability import get_metrics
from tasker.reports import (
    DateRange,
    Report,
    ReportRow,
    build_report,
    format_duration,
    render_pdf,
    resolve_range,
    strip_html,
)

# A Wednesday
NOW = _dt.datetime(2025, 3, 5, 15, 30, tzinfo=_dt.UTC)
MS = _dt.timedelta(milliseconds=1)


def _log(task_id: str, name: str, completed_at: _dt.datetime, minutes: int) -> TaskLog:
    return TaskLog(
        task_id=task_id,
        task_name=name,
        start_time=completed_at - _dt.timedelta(minutes=minutes),
        end_time=completed_at,
        total_time=minutes * 60_000,
        completed_at=completed_at,
    )


def _text(data: bytes) -> str:
    with pymupdf.open(stream=data, filetype="pdf") as doc:
        return "\n".join(page.get_text() for page in doc)


@pytest.mark.parametrize(
    "kind, start, end, label",
    [
        ("today", _dt.datetime(2025, 3, 5), _dt.datetime(2025, 3, 6), "Today"),
        ("yesterday", _dt.datetime(2025, 3, 4), _dt.datetime(2025, 3, 5), "Yesterday"),
        ("weekly", _dt.datetime(2025, 3, 2), _dt.datetime(2025, 3, 9), "This Week"),
        ("monthly", _dt.datetime(2025, 3, 1), _dt.datetime(2025, 4, 1), "This Month"),
    ],
)
def test_named_ranges(kind: str, start: _dt.datetime, end: _dt.datetime, label: str) -> None:
    resolved = resolve_range(kind, NOW)
    assert resolved.start == start.replace(tzinfo=_dt.UTC)
    assert resolved.end == end.replace(tzinfo=_dt.UTC) - MS
    assert resolved.label == label


def test_custom_range_is_inclusive() -> None:
    resolved = resolve_range("custom", NOW, _dt.date(2025, 1, 10), _dt.date(2025, 1, 12))
    assert resolved.label == "2025-01-10 - 2025-01-12"
    assert _dt.datetime(2025, 1, 10, tzinfo=_dt.UTC) in resolved
    assert _dt.datetime(2025, 1, 12, 23, 59, tzinfo=_dt.UTC) in resolved
    assert _dt.datetime(2025, 1, 13, tzinfo=_dt.UTC) not in resolved


@pytest.mark.parametrize(
    "kind, start, end, field",
    [
        ("custom", None, _dt.date(2025, 1, 1), "range"),
        ("custom", _dt.date(2025, 1, 2), _dt.date(2025, 1, 1), "end"),
        ("fortnight", None, None, "range"),
    ],
)
def test_invalid_ranges(
    kind: str, start: _dt.date | None, end: _dt.date | None, field: str
) -> None:
    with pytest.raises(ValidationError) as info:
        resolve_range(kind, NOW, start, end)
    assert info.value.details[0]["field"] == field


def test_build_report_filters_sorts_and_enriches() -> None:
    task = Task(title="Kept", description="<p>Notes&nbsp;here</p>", priority="low", tags=["x"])
    logs = [
        _log(task.id, "Kept", NOW - _dt.timedelta(hours=1), 30),
        _log("gone", "Deleted later", NOW - _dt.timedelta(hours=5), 90),
        _log(task.id, "Kept", NOW - _dt.timedelta(days=1), 10),
    ]
    report = build_report(logs, [task], resolve_range("today", NOW))

    assert [row.title for row in report.rows] == ["Deleted later", "Kept"]
    assert report.rows[0].priority is None
    assert report.rows[1].priority == "low"
    assert report.rows[1].tags == ("x",)
    assert report.total_tasks == 2
    assert report.total_hours == 2.0
    assert report.average_hours == 1.0


def test_format_duration_and_strip_html() -> None:
    assert format_duration(0) == "0m"
    assert format_duration(59 * 60_000) == "59m"
    assert format_duration(125 * 60_000) == "2h 5m"
    assert strip_html("<b>Fish</b> &amp; chips&nbsp;") == "Fish & chips "


def test_pdf_contains_summary_and_rows() -> None:
    report = Report(
        label="Today",
        rows=[
            ReportRow(
                title="A very long task title that overflows",
                completed_at=NOW,
                total_time=90 * 60_000,
                description="<i>Prepared</i> the quarterly numbers",
                priority="high",
            ),
            ReportRow(title="Short", completed_at=NOW, total_time=30 * 60_000),
        ],
    )

    data = render_pdf(report, generated_at=NOW)

    assert data.startswith(b"%PDF")
    text = _text(data)
    assert "TASK REPORT" in text
    assert "Total Tasks Completed: 2" in text
    assert "Total Hours Worked: 2.0h" in text
    assert "Average per Task: 1.00h" in text
    assert "A very long task ..." in text
    assert "Normal" in text
    assert "1h 30m" in text
    assert "Prepared the quarterly numbers" in text
    assert "Report generated on 2025-03-05 15:30 UTC" in text
    assert get_metrics().value("reports_generated") == 1


def test_empty_pdf_says_nothing_was_completed() -> None:
    window = DateRange(NOW, NOW, "This Week")
    text = _text(render_pdf(Report(label=window.label), generated_at=NOW))
    assert "No tasks were completed for this week." in text
    assert "TOTAL HOURS WORKED" not in text


def test_long_reports_span_pages() -> None:
    rows = [
        ReportRow(title=f"Task {i}", completed_at=NOW, total_time=60_000, description="details")
        for i in range(40)
    ]
    data = render_pdf(Report(label="This Month", rows=rows), generated_at=NOW)
    with pymupdf.open(stream=data, filetype="pdf") as doc:
        assert doc.page_count > 1
        assert "Task 39" in doc[doc.page_count - 1].get_text()
