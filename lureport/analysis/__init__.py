"""Static analysis passes over decoded prototypes."""

from .calls import build_call_site, resolve_callee, resolve_line
from .provenance import Origin, Provenance, closure_origin, find_writer, table_origin, trace_register
from .returns import ReturnSite, ReturnVerdict, classify_return, table_shape_at
from .walker import FunctionWalker, GlobalRegistry, analyze

__all__ = [
    "Origin",
    "Provenance",
    "find_writer",
    "trace_register",
    "closure_origin",
    "table_origin",
    "ReturnSite",
    "ReturnVerdict",
    "classify_return",
    "table_shape_at",
    "resolve_line",
    "resolve_callee",
    "build_call_site",
    "FunctionWalker",
    "GlobalRegistry",
    "analyze",
]
