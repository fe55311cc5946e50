"""Embedding surface: analyze prototypes and produce JSON reports."""

from __future__ import annotations

from typing import Optional, Union

from .analysis.walker import analyze
from .report import Report, release_report, report_to_json, write_report_json

__all__ = [
    "analyze",
    "write_report_json",
    "report_to_json",
    "release_report",
    "generate_report",
]


def generate_report(source: Union[str, bytes], chunkname: str = "=?") -> Optional[str]:
    """Compile ``source`` and return its JSON report.

    ``None`` means the source did not compile; nothing is analyzed in that
    case.
    """

    from .io.compiler import compile_prototype

    proto = compile_prototype(source, chunkname)
    if proto is None:
        return None
    report: Report = analyze(proto)
    try:
        return report_to_json(report)
    finally:
        release_report(report)
