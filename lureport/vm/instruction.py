"""Decoding of Lua 5.4 instruction words.

Every 32-bit word is split with a fixed :class:`FieldConfig` per operand.  All
operand views (``A``/``k``/``B``/``C`` as well as ``Bx``/``sBx``/``Ax``/``sJ``)
are computed up front so callers can read whichever one the opcode's mode
defines.  The table-allocation size helpers live here too because they need
to look at the continuation word that follows ``NEWTABLE``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .opcodes import OPCODE_MODES, Opcode, OpMode

LOG = logging.getLogger(__name__)

__all__ = [
    "FieldConfig",
    "FIELDS",
    "Instruction",
    "decode",
    "decode_all",
    "encode_abc",
    "encode_abx",
    "encode_asbx",
    "encode_ax",
    "encode_sj",
    "decode_hash_size",
    "decode_array_size",
]

Word = int

OFFSET_SBX = (1 << 17) - 1 >> 1
OFFSET_SJ = (1 << 25) - 1 >> 1
OFFSET_SC = (1 << 8) - 1 >> 1


@dataclass(frozen=True)
class FieldConfig:
    """Describe how a single operand field is encoded within a word."""

    size: int
    shift: int

    @property
    def mask(self) -> int:
        return ((1 << self.size) - 1) << self.shift

    @property
    def max_value(self) -> int:
        return (1 << self.size) - 1

    def extract(self, word: Word) -> int:
        return (word & self.mask) >> self.shift

    def insert(self, value: int) -> int:
        if not 0 <= value <= self.max_value:
            raise ValueError(f"operand {value} does not fit in {self.size} bits")
        return value << self.shift


FIELDS: Dict[str, FieldConfig] = {
    "op": FieldConfig(size=7, shift=0),
    "a": FieldConfig(size=8, shift=7),
    "k": FieldConfig(size=1, shift=15),
    "b": FieldConfig(size=8, shift=16),
    "c": FieldConfig(size=8, shift=24),
    "bx": FieldConfig(size=17, shift=15),
    "ax": FieldConfig(size=25, shift=7),
}


@dataclass(frozen=True)
class Instruction:
    """A decoded instruction word at position ``index`` of a prototype."""

    index: int
    raw: Word
    op: int
    a: int
    k: int
    b: int
    c: int
    bx: int
    ax: int

    @property
    def opcode(self) -> Optional[Opcode]:
        try:
            return Opcode(self.op)
        except ValueError:
            return None

    @property
    def mode(self) -> Optional[OpMode]:
        opcode = self.opcode
        return OPCODE_MODES[opcode] if opcode is not None else None

    @property
    def sbx(self) -> int:
        return self.bx - OFFSET_SBX

    @property
    def sj(self) -> int:
        return self.ax - OFFSET_SJ

    @property
    def sb(self) -> int:
        return self.b - OFFSET_SC

    @property
    def sc(self) -> int:
        return self.c - OFFSET_SC

    @property
    def name(self) -> str:
        opcode = self.opcode
        return opcode.name if opcode is not None else f"OP_{self.op}"


def decode(word: Word, index: int = 0) -> Instruction:
    """Split ``word`` into every operand view."""

    word &= 0xFFFFFFFF
    return Instruction(
        index=index,
        raw=word,
        op=FIELDS["op"].extract(word),
        a=FIELDS["a"].extract(word),
        k=FIELDS["k"].extract(word),
        b=FIELDS["b"].extract(word),
        c=FIELDS["c"].extract(word),
        bx=FIELDS["bx"].extract(word),
        ax=FIELDS["ax"].extract(word),
    )


def decode_all(words: Iterable[Word]) -> List[Instruction]:
    return [decode(word, index) for index, word in enumerate(words)]


def encode_abc(op: int, a: int = 0, b: int = 0, c: int = 0, k: int = 0) -> Word:
    """Assemble an iABC word; used by tests and tooling."""

    return (
        FIELDS["op"].insert(int(op))
        | FIELDS["a"].insert(a)
        | FIELDS["k"].insert(k)
        | FIELDS["b"].insert(b)
        | FIELDS["c"].insert(c)
    )


def encode_abx(op: int, a: int = 0, bx: int = 0) -> Word:
    return FIELDS["op"].insert(int(op)) | FIELDS["a"].insert(a) | FIELDS["bx"].insert(bx)


def encode_asbx(op: int, a: int = 0, sbx: int = 0) -> Word:
    return encode_abx(op, a, sbx + OFFSET_SBX)


def encode_ax(op: int, ax: int = 0) -> Word:
    return FIELDS["op"].insert(int(op)) | FIELDS["ax"].insert(ax)


def encode_sj(op: int, sj: int = 0) -> Word:
    return encode_ax(op, sj + OFFSET_SJ)


def decode_hash_size(b: int) -> int:
    """Return the hash slot count encoded in ``NEWTABLE``'s ``B`` operand.

    ``B`` stores ``log2(size) + 1`` with zero meaning no hash part.
    """

    return 0 if b == 0 else 1 << (b - 1)


def decode_array_size(instructions: Sequence[Instruction], pc: int) -> int:
    """Return the array slot count of the ``NEWTABLE`` at ``pc``.

    With ``k`` set the low eight bits live in ``C`` and the rest in the
    ``Ax`` operand of the ``EXTRAARG`` that follows.  A missing continuation
    degrades to ``C`` alone.
    """

    ins = instructions[pc]
    if not ins.k:
        return ins.c
    if pc + 1 < len(instructions):
        extra = instructions[pc + 1]
        if extra.opcode is Opcode.EXTRAARG:
            return (extra.ax << 8) | ins.c
    LOG.warning("NEWTABLE at pc %d has k set but no EXTRAARG; using C=%d", pc, ins.c)
    return ins.c
