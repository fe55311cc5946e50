"""Lua 5.4 opcode metadata and register-effect classification.

Two tables are kept here and both must cover every member of :class:`Opcode`:

* :data:`OPCODE_MODES` records which operand layout an opcode uses.
* :data:`REGISTER_WRITES` records which registers an instruction assigns.

The provenance tracer trusts the second table blindly, so a missing entry
would silently make a scan walk past a real writer.  The module refuses to
import when either table is incomplete.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from .instruction import Instruction

__all__ = [
    "Opcode",
    "OpMode",
    "OPCODE_MODES",
    "REGISTER_WRITES",
    "TABLE_STORE_OPCODES",
    "RETURN_OPCODES",
    "CALL_OPCODES",
    "MAX_REGISTER",
    "registers_written",
    "writes_register",
    "unclassified_opcodes",
]

# Highest register number an ``A`` operand can name (``MAXARG_A``).
MAX_REGISTER = 255


class OpMode(Enum):
    """Instruction encodings used by Lua 5.4."""

    ABC = "iABC"
    ABX = "iABx"
    ASBX = "iAsBx"
    AX = "iAx"
    SJ = "isJ"


class Opcode(IntEnum):
    """Lua 5.4 opcodes in ``lopcodes.h`` order."""

    MOVE = 0
    LOADI = 1
    LOADF = 2
    LOADK = 3
    LOADKX = 4
    LOADFALSE = 5
    LFALSESKIP = 6
    LOADTRUE = 7
    LOADNIL = 8
    GETUPVAL = 9
    SETUPVAL = 10
    GETTABUP = 11
    GETTABLE = 12
    GETI = 13
    GETFIELD = 14
    SETTABUP = 15
    SETTABLE = 16
    SETI = 17
    SETFIELD = 18
    NEWTABLE = 19
    SELF = 20
    ADDI = 21
    ADDK = 22
    SUBK = 23
    MULK = 24
    MODK = 25
    POWK = 26
    DIVK = 27
    IDIVK = 28
    BANDK = 29
    BORK = 30
    BXORK = 31
    SHRI = 32
    SHLI = 33
    ADD = 34
    SUB = 35
    MUL = 36
    MOD = 37
    POW = 38
    DIV = 39
    IDIV = 40
    BAND = 41
    BOR = 42
    BXOR = 43
    SHL = 44
    SHR = 45
    MMBIN = 46
    MMBINI = 47
    MMBINK = 48
    UNM = 49
    BNOT = 50
    NOT = 51
    LEN = 52
    CONCAT = 53
    CLOSE = 54
    TBC = 55
    JMP = 56
    EQ = 57
    LT = 58
    LE = 59
    EQK = 60
    EQI = 61
    LTI = 62
    LEI = 63
    GTI = 64
    GEI = 65
    TEST = 66
    TESTSET = 67
    CALL = 68
    TAILCALL = 69
    RETURN = 70
    RETURN0 = 71
    RETURN1 = 72
    FORLOOP = 73
    FORPREP = 74
    TFORPREP = 75
    TFORCALL = 76
    TFORLOOP = 77
    SETLIST = 78
    CLOSURE = 79
    VARARG = 80
    VARARGPREP = 81
    EXTRAARG = 82


_ABX = frozenset(
    {
        Opcode.LOADK,
        Opcode.LOADKX,
        Opcode.FORLOOP,
        Opcode.FORPREP,
        Opcode.TFORPREP,
        Opcode.TFORLOOP,
        Opcode.CLOSURE,
    }
)
_ASBX = frozenset({Opcode.LOADI, Opcode.LOADF})

OPCODE_MODES: Dict[Opcode, OpMode] = {}
for _op in Opcode:
    if _op in _ABX:
        OPCODE_MODES[_op] = OpMode.ABX
    elif _op in _ASBX:
        OPCODE_MODES[_op] = OpMode.ASBX
    elif _op is Opcode.EXTRAARG:
        OPCODE_MODES[_op] = OpMode.AX
    elif _op is Opcode.JMP:
        OPCODE_MODES[_op] = OpMode.SJ
    else:
        OPCODE_MODES[_op] = OpMode.ABC

# Instructions whose ``A`` register is a table being stored into.  They read
# R[A] but never reassign it.
TABLE_STORE_OPCODES: FrozenSet[Opcode] = frozenset(
    {Opcode.SETTABLE, Opcode.SETI, Opcode.SETFIELD, Opcode.SETLIST}
)
RETURN_OPCODES: FrozenSet[Opcode] = frozenset({Opcode.RETURN, Opcode.RETURN0, Opcode.RETURN1})
CALL_OPCODES: FrozenSet[Opcode] = frozenset({Opcode.CALL, Opcode.TAILCALL})


WriteRange = Callable[["Instruction"], range]


def _none(_ins: "Instruction") -> range:
    return range(0)


def _a(ins: "Instruction") -> range:
    return range(ins.a, ins.a + 1)


def _a_pair(ins: "Instruction") -> range:
    return range(ins.a, ins.a + 2)


def _a_through_b(ins: "Instruction") -> range:
    return range(ins.a, ins.a + ins.b + 1)


def _open_results(ins: "Instruction") -> range:
    # C == 0 leaves every register from A up to the stack top defined.
    if ins.c == 0:
        return range(ins.a, MAX_REGISTER + 1)
    return range(ins.a, ins.a + max(ins.c - 1, 1))


def _for_block(ins: "Instruction") -> range:
    return range(ins.a, ins.a + 4)


def _tforcall(ins: "Instruction") -> range:
    return range(ins.a + 4, ins.a + 4 + ins.c)


def _tforloop(ins: "Instruction") -> range:
    return range(ins.a + 2, ins.a + 3)


REGISTER_WRITES: Dict[Opcode, WriteRange] = {
    Opcode.MOVE: _a,
    Opcode.LOADI: _a,
    Opcode.LOADF: _a,
    Opcode.LOADK: _a,
    Opcode.LOADKX: _a,
    Opcode.LOADFALSE: _a,
    Opcode.LFALSESKIP: _a,
    Opcode.LOADTRUE: _a,
    Opcode.LOADNIL: _a_through_b,
    Opcode.GETUPVAL: _a,
    Opcode.SETUPVAL: _none,
    Opcode.GETTABUP: _a,
    Opcode.GETTABLE: _a,
    Opcode.GETI: _a,
    Opcode.GETFIELD: _a,
    Opcode.SETTABUP: _none,
    Opcode.SETTABLE: _none,
    Opcode.SETI: _none,
    Opcode.SETFIELD: _none,
    Opcode.NEWTABLE: _a,
    Opcode.SELF: _a_pair,
    Opcode.ADDI: _a,
    Opcode.ADDK: _a,
    Opcode.SUBK: _a,
    Opcode.MULK: _a,
    Opcode.MODK: _a,
    Opcode.POWK: _a,
    Opcode.DIVK: _a,
    Opcode.IDIVK: _a,
    Opcode.BANDK: _a,
    Opcode.BORK: _a,
    Opcode.BXORK: _a,
    Opcode.SHRI: _a,
    Opcode.SHLI: _a,
    Opcode.ADD: _a,
    Opcode.SUB: _a,
    Opcode.MUL: _a,
    Opcode.MOD: _a,
    Opcode.POW: _a,
    Opcode.DIV: _a,
    Opcode.IDIV: _a,
    Opcode.BAND: _a,
    Opcode.BOR: _a,
    Opcode.BXOR: _a,
    Opcode.SHL: _a,
    Opcode.SHR: _a,
    # The metamethod fallbacks name the operands of the preceding arithmetic
    # instruction; the result register belongs to that instruction.
    Opcode.MMBIN: _none,
    Opcode.MMBINI: _none,
    Opcode.MMBINK: _none,
    Opcode.UNM: _a,
    Opcode.BNOT: _a,
    Opcode.NOT: _a,
    Opcode.LEN: _a,
    Opcode.CONCAT: _a,
    Opcode.CLOSE: _none,
    Opcode.TBC: _none,
    Opcode.JMP: _none,
    Opcode.EQ: _none,
    Opcode.LT: _none,
    Opcode.LE: _none,
    Opcode.EQK: _none,
    Opcode.EQI: _none,
    Opcode.LTI: _none,
    Opcode.LEI: _none,
    Opcode.GTI: _none,
    Opcode.GEI: _none,
    Opcode.TEST: _none,
    Opcode.TESTSET: _a,
    Opcode.CALL: _open_results,
    Opcode.TAILCALL: _a,
    Opcode.RETURN: _none,
    Opcode.RETURN0: _none,
    Opcode.RETURN1: _none,
    Opcode.FORLOOP: _for_block,
    Opcode.FORPREP: _for_block,
    Opcode.TFORPREP: _none,
    Opcode.TFORCALL: _tforcall,
    Opcode.TFORLOOP: _tforloop,
    Opcode.SETLIST: _none,
    Opcode.CLOSURE: _a,
    Opcode.VARARG: _open_results,
    Opcode.VARARGPREP: _none,
    Opcode.EXTRAARG: _none,
}


def unclassified_opcodes() -> FrozenSet[Opcode]:
    """Return opcodes missing from either metadata table."""

    missing = set(Opcode) - set(REGISTER_WRITES)
    missing |= set(Opcode) - set(OPCODE_MODES)
    return frozenset(missing)


_unclassified = unclassified_opcodes()
if _unclassified:  # pragma: no cover - guards edits to the tables above
    raise RuntimeError(
        "opcode tables are incomplete: "
        + ", ".join(sorted(op.name for op in _unclassified))
    )


def registers_written(ins: "Instruction") -> range:
    """Return the registers assigned by ``ins``.

    Opcodes outside the Lua 5.4 set are assumed to write ``R[A]`` so that
    backward scans stop at them instead of looking past.
    """

    if ins.opcode is None:
        return range(ins.a, ins.a + 1)
    return REGISTER_WRITES[ins.opcode](ins)


def writes_register(ins: "Instruction", reg: int) -> bool:
    """Return ``True`` when ``ins`` assigns register ``reg``."""

    return reg in registers_written(ins)
