from __future__ import annotations

from .builder import (
    RANGE_KINDS,
    DateRange,
    Report,
    ReportRow,
    build_report,
    format_duration,
    resolve_range,
    strip_html,
)
from .pdf import render_pdf

__all__ = [
    "RANGE_KINDS",
    "DateRange",
    "Report",
    "ReportRow",
    "build_report",
    "format_duration",
    "resolve_range",
    "strip_html",
    "render_pdf",
]
