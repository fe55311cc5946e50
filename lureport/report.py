"""Report model and its JSON projection.

Every entity serialises through its own ``as_dict`` with the field order
spelled out by hand, so the output layout does not depend on dataclass field
order and never omits a field.  Enumerations are written as their integer
values; consumers decode them against the fixed numbering below.
"""

from __future__ import annotations

import io
import json
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, TextIO, Union

from .config import LUA_VERSION

__all__ = [
    "ReturnShape",
    "CallKind",
    "ConstantKind",
    "TableShape",
    "ClosureRef",
    "ConstantValue",
    "CallSiteRecord",
    "FieldReadRecord",
    "FunctionRecord",
    "GlobalBinding",
    "Report",
    "ENV_TABLE_NAME",
    "UNRESOLVED_NAME",
    "write_report_json",
    "report_to_json",
    "release_report",
]

# Sentinel table names used by field reads and call-site names.
ENV_TABLE_NAME = "_ENV"
UNRESOLVED_NAME = "?"


class ReturnShape(IntEnum):
    UNKNOWN = 0
    VOID = 1
    TABLE = 2
    CALL = 3
    UPVALUE = 4
    CONSTANT = 5
    MULTI = 6
    MIXED = 7

    @property
    def is_weak(self) -> bool:
        return self in (ReturnShape.UNKNOWN, ReturnShape.VOID)


class CallKind(IntEnum):
    UNKNOWN = 0
    GLOBAL = 1
    FIELD = 2
    METHOD = 3
    LOCAL = 4


class ConstantKind(IntEnum):
    STRING = 0
    INTEGER = 1
    FLOAT = 2
    BOOL = 3
    NULL = 4


def estimate_table_bytes(array_size: int, hash_size: int) -> int:
    """Rough footprint of a table: header, 16-byte array slots, 32-byte nodes."""

    return 32 + array_size * 16 + hash_size * 32


@dataclass
class TableShape:
    array_size: int = 0
    hash_size: int = 0
    estimated_bytes: int = 0
    contains_closures: bool = False

    @classmethod
    def sized(cls, array_size: int, hash_size: int) -> "TableShape":
        return cls(
            array_size=array_size,
            hash_size=hash_size,
            estimated_bytes=estimate_table_bytes(array_size, hash_size),
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "array_size": self.array_size,
            "hash_size": self.hash_size,
            "estimated_bytes": self.estimated_bytes,
            "contains_closures": bool(self.contains_closures),
        }


@dataclass(frozen=True)
class ClosureRef:
    line_defined: int
    upvalue_count: int

    def as_dict(self) -> Dict[str, object]:
        return {"line_defined": self.line_defined, "upvalue_count": self.upvalue_count}


def _json_float(value: float) -> Union[float, str]:
    # strict JSON has no Infinity/NaN literals; use Lua's tostring spelling
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return value


@dataclass(frozen=True)
class ConstantValue:
    """One constant-pool slot; only the payload matching ``kind`` is meaningful."""

    kind: ConstantKind
    s_val: Optional[str] = None
    i_val: int = 0
    f_val: float = 0.0
    b_val: bool = False

    @classmethod
    def from_value(cls, value: object) -> "ConstantValue":
        # bool first: it is a subclass of int
        if isinstance(value, bool):
            return cls(ConstantKind.BOOL, b_val=value)
        if isinstance(value, int):
            return cls(ConstantKind.INTEGER, i_val=value)
        if isinstance(value, float):
            return cls(ConstantKind.FLOAT, f_val=value)
        if isinstance(value, bytes):
            return cls(ConstantKind.STRING, s_val=value.decode("utf-8", errors="backslashreplace"))
        if isinstance(value, str):
            return cls(ConstantKind.STRING, s_val=value)
        return cls(ConstantKind.NULL)

    def as_dict(self) -> Dict[str, object]:
        return {
            "kind": int(self.kind),
            "s_val": self.s_val if self.kind is ConstantKind.STRING else None,
            "i_val": self.i_val if self.kind is ConstantKind.INTEGER else 0,
            "f_val": _json_float(self.f_val) if self.kind is ConstantKind.FLOAT else 0.0,
            "b_val": bool(self.b_val) if self.kind is ConstantKind.BOOL else False,
        }


@dataclass
class CallSiteRecord:
    line: int = 0
    kind: CallKind = CallKind.UNKNOWN
    callee: str = ""
    arg_count: int = -1
    is_tail: bool = False

    def as_dict(self) -> Dict[str, object]:
        return {
            "line": self.line,
            "kind": int(self.kind),
            "callee": self.callee,
            "arg_count": self.arg_count,
            "is_tail": bool(self.is_tail),
        }


@dataclass(frozen=True)
class FieldReadRecord:
    table_name: str
    field_name: str

    def as_dict(self) -> Dict[str, object]:
        return {"table_name": self.table_name, "field_name": self.field_name}


@dataclass
class FunctionRecord:
    """Everything the analyzer learned about one prototype."""

    source: str = UNRESOLVED_NAME
    line_defined: int = 0
    last_line: int = 0
    param_count: int = 0
    is_vararg: bool = False
    is_vararg_used: bool = False
    is_method: bool = False
    param_names: List[str] = field(default_factory=list)
    upvalue_names: List[str] = field(default_factory=list)
    return_kind: ReturnShape = ReturnShape.UNKNOWN
    table_info: Optional[TableShape] = None
    closures: List[ClosureRef] = field(default_factory=list)
    constants: List[ConstantValue] = field(default_factory=list)
    call_sites: List[CallSiteRecord] = field(default_factory=list)
    reads: List[FieldReadRecord] = field(default_factory=list)
    child_proto_indices: List[int] = field(default_factory=list)

    def add_read(self, table_name: str, field_name: str) -> None:
        entry = FieldReadRecord(table_name, field_name)
        if entry not in self.reads:
            self.reads.append(entry)

    def table_shape(self) -> TableShape:
        """Return the shape to publish; zero sizes unless the verdict is TABLE."""

        if self.return_kind is ReturnShape.TABLE and self.table_info is not None:
            shape = TableShape(
                array_size=self.table_info.array_size,
                hash_size=self.table_info.hash_size,
                estimated_bytes=self.table_info.estimated_bytes,
            )
        else:
            shape = TableShape()
        shape.contains_closures = bool(self.closures)
        return shape

    def as_dict(self) -> Dict[str, object]:
        return {
            "source": self.source,
            "line_defined": self.line_defined,
            "last_line": self.last_line,
            "param_count": self.param_count,
            "is_vararg": bool(self.is_vararg),
            "is_method": bool(self.is_method),
            "param_names": list(self.param_names),
            "upvalue_names": list(self.upvalue_names),
            "return_kind": int(self.return_kind),
            "table_info": self.table_shape().as_dict(),
            "is_vararg_used": bool(self.is_vararg_used),
            "closures": [closure.as_dict() for closure in self.closures],
            "constants": [constant.as_dict() for constant in self.constants],
            "child_proto_indices": list(self.child_proto_indices),
            "call_sites": [site.as_dict() for site in self.call_sites],
            "reads": [read.as_dict() for read in self.reads],
        }


@dataclass
class GlobalBinding:
    name: str
    is_function: bool = False
    function_index: int = -1

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "is_function": bool(self.is_function),
            "function_index": self.function_index,
        }


@dataclass
class Report:
    """Aggregate result of one analysis; ``functions[0]`` is the main chunk."""

    functions: List[FunctionRecord] = field(default_factory=list)
    globals: List[GlobalBinding] = field(default_factory=list)
    lua_version: str = LUA_VERSION

    def as_dict(self) -> Dict[str, object]:
        return {
            "lua_version": self.lua_version,
            "functions": [record.as_dict() for record in self.functions],
            "globals": [binding.as_dict() for binding in self.globals],
        }

    def release(self) -> None:
        """Drop every record and binding the report owns."""

        for record in self.functions:
            record.param_names.clear()
            record.upvalue_names.clear()
            record.closures.clear()
            record.constants.clear()
            record.call_sites.clear()
            record.reads.clear()
            record.child_proto_indices.clear()
        self.functions.clear()
        self.globals.clear()


def write_report_json(report: Report, stream: TextIO) -> None:
    """Serialise ``report`` to ``stream`` as indented JSON with a final newline."""

    json.dump(report.as_dict(), stream, ensure_ascii=False, indent=2, allow_nan=False)
    stream.write("\n")


def report_to_json(report: Report) -> str:
    buffer = io.StringIO()
    write_report_json(report, buffer)
    return buffer.getvalue()


def release_report(report: Optional[Report]) -> None:
    if report is None:
        return
    report.release()
