"""Bounded backward register provenance.

Lua 5.4 code is register based and the analyzer has no SSA form, so the
question "where did the value in ``R[x]`` at ``pc`` come from" is answered by
walking back over the instruction stream until something assigns ``R[x]``.
Scans never follow jumps and never look further than a fixed window; running
out of window reports :attr:`Origin.INDETERMINATE` rather than a guess.

Which instructions count as assignments is decided solely by
:func:`lureport.vm.opcodes.writes_register`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence

from ..vm.instruction import Instruction
from ..vm.opcodes import Opcode, writes_register

__all__ = [
    "Origin",
    "Provenance",
    "INDETERMINATE",
    "find_writer",
    "trace_register",
    "closure_origin",
    "table_origin",
]


class Origin(Enum):
    CLOSURE = "closure"
    TABLE = "table"
    CALL = "call"
    READ = "read"
    LITERAL = "literal"
    OTHER = "other"
    INDETERMINATE = "indeterminate"


_ORIGINS: Dict[Opcode, Origin] = {
    Opcode.CLOSURE: Origin.CLOSURE,
    Opcode.NEWTABLE: Origin.TABLE,
    Opcode.CALL: Origin.CALL,
    Opcode.TAILCALL: Origin.CALL,
    Opcode.GETUPVAL: Origin.READ,
    Opcode.GETTABUP: Origin.READ,
    Opcode.GETTABLE: Origin.READ,
    Opcode.GETFIELD: Origin.READ,
    Opcode.GETI: Origin.READ,
    Opcode.LOADK: Origin.LITERAL,
    Opcode.LOADKX: Origin.LITERAL,
    Opcode.LOADI: Origin.LITERAL,
    Opcode.LOADF: Origin.LITERAL,
    Opcode.LOADTRUE: Origin.LITERAL,
    Opcode.LOADFALSE: Origin.LITERAL,
    Opcode.LFALSESKIP: Origin.LITERAL,
    Opcode.LOADNIL: Origin.LITERAL,
}


@dataclass(frozen=True)
class Provenance:
    """Result of a trace: the kind of writer and where it sits (-1 if none)."""

    origin: Origin
    pc: int = -1

    @property
    def found(self) -> bool:
        return self.pc >= 0


INDETERMINATE = Provenance(Origin.INDETERMINATE)


def _lower_bound(pc: int, window: int) -> int:
    return max(pc - window, 0)


def find_writer(
    instructions: Sequence[Instruction], pc: int, reg: int, window: int
) -> Optional[Instruction]:
    """Return the nearest instruction before ``pc`` that assigns ``reg``."""

    for index in range(pc - 1, _lower_bound(pc, window) - 1, -1):
        ins = instructions[index]
        if writes_register(ins, reg):
            return ins
    return None


def trace_register(
    instructions: Sequence[Instruction], pc: int, reg: int, window: int
) -> Provenance:
    """Classify the last writer of ``reg`` before ``pc``."""

    writer = find_writer(instructions, pc, reg, window)
    if writer is None:
        return INDETERMINATE
    opcode = writer.opcode
    origin = _ORIGINS.get(opcode, Origin.OTHER) if opcode is not None else Origin.OTHER
    return Provenance(origin, writer.index)


def closure_origin(
    instructions: Sequence[Instruction], pc: int, reg: int, window: int = 16
) -> Provenance:
    """Decide whether ``reg`` holds a freshly built closure at ``pc``.

    The origin is :attr:`Origin.CLOSURE` with the ``CLOSURE`` pc, or
    :attr:`Origin.OTHER` when some other writer came first, or
    :attr:`Origin.INDETERMINATE` when the window held no writer.
    """

    result = trace_register(instructions, pc, reg, window)
    if result.origin in (Origin.CLOSURE, Origin.INDETERMINATE):
        return result
    return Provenance(Origin.OTHER, result.pc)


def table_origin(
    instructions: Sequence[Instruction], pc: int, reg: int, window: int = 512
) -> int:
    """Return the pc of the ``NEWTABLE`` whose table ``reg`` holds, or -1.

    Stores into the table (``SETFIELD``/``SETTABLE``/``SETI``/``SETLIST``)
    use ``reg`` without reassigning it and are walked past; any other
    assignment means the register no longer holds that table.
    """

    writer = find_writer(instructions, pc, reg, window)
    if writer is not None and writer.opcode is Opcode.NEWTABLE:
        return writer.index
    return -1
