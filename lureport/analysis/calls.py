"""Call-site resolution: callee naming, arity and source lines."""

from __future__ import annotations

from bisect import bisect_right
from typing import Sequence, Tuple

from ..config import DEFAULT_WINDOWS, ScanWindows
from ..io.proto import Prototype
from ..report import UNRESOLVED_NAME, CallKind, CallSiteRecord
from ..vm.instruction import Instruction
from ..vm.opcodes import Opcode
from .provenance import find_writer

__all__ = ["ABSLINEINFO_MARKER", "resolve_line", "resolve_callee", "build_call_site"]

# lineinfo delta stored where the real line comes from abslineinfo instead
ABSLINEINFO_MARKER = -0x80


def resolve_line(proto: Prototype, pc: int) -> int:
    """Return the source line of instruction ``pc``, or 0 without debug info.

    The nearest absolute checkpoint at or before ``pc`` is found by binary
    search, then the per-instruction deltas after it are summed.  With no
    checkpoint the sum starts from ``line_defined``.
    """

    if not proto.lineinfo and not proto.abslineinfo:
        return 0

    base_pc = -1
    line = proto.line_defined
    if proto.abslineinfo:
        position = bisect_right([entry[0] for entry in proto.abslineinfo], pc)
        if position:
            base_pc, line = proto.abslineinfo[position - 1]
        elif not proto.lineinfo:
            return 0

    for delta in proto.lineinfo[base_pc + 1 : pc + 1]:
        if delta != ABSLINEINFO_MARKER:
            line += delta
    return line


def _base_name(
    proto: Prototype, instructions: Sequence[Instruction], pc: int, reg: int, window: int
) -> str:
    writer = find_writer(instructions, pc, reg, window)
    if writer is None:
        return UNRESOLVED_NAME
    if writer.opcode is Opcode.GETTABUP:
        key = proto.string_constant(writer.c)
        if key is not None:
            return key
    elif writer.opcode is Opcode.GETUPVAL:
        name = proto.upvalue_name(writer.b)
        if name:
            return name
    return UNRESOLVED_NAME


def resolve_callee(
    proto: Prototype,
    instructions: Sequence[Instruction],
    call_pc: int,
    callee_reg: int,
    windows: ScanWindows = DEFAULT_WINDOWS,
) -> Tuple[CallKind, str]:
    """Work out how ``R[callee_reg]`` was loaded before the call at ``call_pc``."""

    writer = find_writer(instructions, call_pc, callee_reg, windows.callee)
    if writer is None:
        return CallKind.UNKNOWN, ""

    opcode = writer.opcode
    if opcode is Opcode.GETTABUP:
        key = proto.string_constant(writer.c)
        if key is None:
            return CallKind.UNKNOWN, ""
        if proto.is_env_upvalue(writer.b):
            return CallKind.GLOBAL, key
        upvalue = proto.upvalue_name(writer.b) or UNRESOLVED_NAME
        return CallKind.FIELD, f"{upvalue}.{key}"

    if opcode is Opcode.GETFIELD:
        key = proto.string_constant(writer.c)
        if key is None:
            return CallKind.UNKNOWN, ""
        base = _base_name(proto, instructions, writer.index, writer.b, windows.callee_base)
        return CallKind.FIELD, f"{base}.{key}"

    if opcode is Opcode.SELF:
        # a key that did not fit the constant operand lives in a register
        key = proto.string_constant(writer.c) if writer.k else None
        if key is None:
            return CallKind.UNKNOWN, ""
        return CallKind.METHOD, key

    if opcode in (Opcode.MOVE, Opcode.GETUPVAL, Opcode.CLOSURE):
        return CallKind.LOCAL, ""

    return CallKind.UNKNOWN, ""


def build_call_site(
    proto: Prototype,
    instructions: Sequence[Instruction],
    pc: int,
    windows: ScanWindows = DEFAULT_WINDOWS,
) -> CallSiteRecord:
    """Describe the ``CALL``/``TAILCALL`` at ``pc``.

    ``arg_count`` is ``B - 1`` (``-1`` for an open argument list); method
    calls leave the implicit receiver out of the count.
    """

    ins = instructions[pc]
    kind, callee = resolve_callee(proto, instructions, pc, ins.a, windows)
    if ins.b == 0:
        arg_count = -1
    elif kind is CallKind.METHOD:
        arg_count = max(ins.b - 2, 0)
    else:
        arg_count = ins.b - 1
    return CallSiteRecord(
        line=resolve_line(proto, pc),
        kind=kind,
        callee=callee,
        arg_count=arg_count,
        is_tail=ins.opcode is Opcode.TAILCALL,
    )
