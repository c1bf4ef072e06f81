from __future__ import annotations

import datetime as _dt

import pymupdf

from tasker.models.task import utcnow
from tasker.observability import get_json_logger, get_metrics

from .builder import Report, format_duration, strip_html

# Layout is specified in millimetres on an A4 page and converted to points
_MM = 72 / 25.4
PAGE_WIDTH = 210 * _MM
PAGE_HEIGHT = 297 * _MM
MARGIN = 15 * _MM

HEADER_BLUE = (41 / 255, 128 / 255, 185 / 255)
BLACK = (0.0, 0.0, 0.0)
WHITE = (1.0, 1.0, 1.0)
GREY_TEXT = (100 / 255, 100 / 255, 100 / 255)
GREY_LINE = (200 / 255, 200 / 255, 200 / 255)
HEADER_ROW = (240 / 255, 240 / 255, 240 / 255)
STRIPE = (250 / 255, 250 / 255, 250 / 255)

REGULAR = "helv"
BOLD = "hebo"

# x offsets of the table columns, relative to the left margin
_COLUMNS = (("Task", 2), ("Priority", 80), ("Time", 110), ("Completed", 140))
_TITLE_MAX = 20
_DESCRIPTION_MAX = 60


def _mm(value: float) -> float:
    return value * _MM


def _truncate_title(title: str) -> str:
    return title[:17] + "..." if len(title) > _TITLE_MAX else title


class _Canvas:
    """Cursor over a growing PyMuPDF document, in millimetres."""

    def __init__(self, doc: pymupdf.Document) -> None:
        self.doc = doc
        self.page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)

    def text(
        self,
        x: float,
        y: float,
        value: str,
        *,
        size: float = 10,
        bold: bool = False,
        color: tuple[float, float, float] = BLACK,
        align: str = "left",
    ) -> None:
        font = BOLD if bold else REGULAR
        left = _mm(x)
        if align != "left":
            width = pymupdf.get_text_length(value, fontname=font, fontsize=size)
            left -= width if align == "right" else width / 2
        self.page.insert_text(
            pymupdf.Point(left, _mm(y)), value, fontsize=size, fontname=font, color=color
        )

    def fill(self, x: float, y: float, w: float, h: float, color: tuple[float, ...]) -> None:
        rect = pymupdf.Rect(_mm(x), _mm(y), _mm(x + w), _mm(y + h))
        self.page.draw_rect(rect, color=None, fill=color, width=0)

    def frame(self, x: float, y: float, w: float, h: float) -> None:
        rect = pymupdf.Rect(_mm(x), _mm(y), _mm(x + w), _mm(y + h))
        self.page.draw_rect(rect, color=GREY_LINE, width=0.5)

    def rule(self, y: float) -> None:
        start = pymupdf.Point(MARGIN, _mm(y))
        end = pymupdf.Point(PAGE_WIDTH - MARGIN, _mm(y))
        self.page.draw_line(start, end, color=BLACK, width=0.5)

    def new_page(self) -> None:
        self.page = self.doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)


def _header_band(canvas: _Canvas) -> None:
    canvas.fill(0, 0, 210, 40, HEADER_BLUE)
    canvas.text(15, 25, "TASKER", size=24, bold=True, color=WHITE)
    canvas.text(15, 32, "Task Management Solutions", size=10, color=WHITE)


def _footer(canvas: _Canvas, generated_at: _dt.datetime) -> None:
    stamp = generated_at.strftime("%Y-%m-%d %H:%M UTC")
    canvas.text(105, 282, "Generated by Tasker - Professional Task Management Application",
                size=8, color=GREY_TEXT, align="center")
    canvas.text(105, 287, f"Report generated on {stamp}", size=8, color=GREY_TEXT, align="center")


def render_pdf(
    report: Report, title: str | None = None, generated_at: _dt.datetime | None = None
) -> bytes:
    """Render an invoice-style productivity report and return the PDF bytes."""
    stamp = generated_at or utcnow()
    doc = pymupdf.open()
    try:
        canvas = _Canvas(doc)
        _header_band(canvas)
        canvas.text(195, 25, "TASK REPORT", size=16, bold=True, align="right")
        canvas.text(195, 32, title or report.label or "Daily Report", align="right")

        y = 55.0
        canvas.text(15, y, "Report Summary", size=12, bold=True)
        y += 8
        canvas.frame(15, y, 180, 25)
        canvas.text(20, y + 8, f"Total Tasks Completed: {report.total_tasks}")
        canvas.text(20, y + 15, f"Total Hours Worked: {report.total_hours}h")
        canvas.text(20, y + 22, f"Average per Task: {report.average_hours:.2f}h")
        y += 35

        if not report.rows:
            canvas.text(15, y, f"No tasks were completed for {report.label.lower()}.", size=12)
        else:
            canvas.text(15, y, "Task Details", size=12, bold=True)
            y += 10
            canvas.fill(15, y - 5, 180, 8, HEADER_ROW)
            for name, offset in _COLUMNS:
                canvas.text(15 + offset, y, name, size=9, bold=True)
            y += 12

            for index, row in enumerate(report.rows):
                if y > 297 - 30:
                    _footer(canvas, stamp)
                    canvas.new_page()
                    _header_band(canvas)
                    y = 55.0
                if index % 2 == 0:
                    canvas.fill(15, y - 4, 180, 10, STRIPE)
                canvas.text(17, y, _truncate_title(row.title), size=9)
                canvas.text(95, y, row.priority or "Normal", size=9)
                canvas.text(125, y, format_duration(row.total_time), size=9)
                canvas.text(155, y, row.completed_at.strftime("%H:%M"), size=9)
                y += 8

                description = strip_html(row.description or "").strip()
                if description:
                    suffix = "..." if len(description) > _DESCRIPTION_MAX else ""
                    canvas.text(17, y, description[:_DESCRIPTION_MAX] + suffix, size=8,
                                color=GREY_TEXT)
                    y += 6

            y += 10
            canvas.rule(y)
            y += 8
            canvas.text(115, y, "TOTAL HOURS WORKED:", size=9, bold=True)
            canvas.text(175, y, f"{report.total_hours}h", size=9, bold=True)

        _footer(canvas, stamp)
        pages = doc.page_count
        data = doc.tobytes()
    finally:
        doc.close()

    get_json_logger("tasker.reports").info(
        "report generated",
        extra={
            "event": "report_generated",
            "attributes": {
                "label": report.label,
                "rows": report.total_tasks,
                "pages": pages,
                "bytes": len(data),
            },
        },
    )
    get_metrics().increment("reports_generated")
    return data


__all__ = ["render_pdf"]
