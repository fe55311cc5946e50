"""Static report generator for compiled Lua 5.4 functions."""

from importlib import import_module
from typing import Any

from .api import analyze, generate_report, release_report, report_to_json, write_report_json
from .config import DEFAULT_WINDOWS, LUA_VERSION, ScanWindows
from .exceptions import ChunkFormatError, CompileError, LuReportError
from .io.proto import Prototype
from .io.undump import load_chunk
from .report import CallKind, ConstantKind, Report, ReturnShape

__version__ = "0.1.0"

__all__ = [
    "analyze",
    "generate_report",
    "release_report",
    "report_to_json",
    "write_report_json",
    "load_chunk",
    "compile_source",
    "compile_prototype",
    "Prototype",
    "Report",
    "ReturnShape",
    "CallKind",
    "ConstantKind",
    "ScanWindows",
    "DEFAULT_WINDOWS",
    "LUA_VERSION",
    "LuReportError",
    "ChunkFormatError",
    "CompileError",
]


def __getattr__(name: str) -> Any:  # pragma: no cover - trivial delegator
    if name in {"compile_source", "compile_prototype"}:
        value = getattr(import_module(".io.compiler", __name__), name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
