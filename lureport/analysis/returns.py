"""Return-site classification and the per-function return verdict."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from ..config import DEFAULT_WINDOWS, ScanWindows
from ..report import ReturnShape, TableShape
from ..vm.instruction import Instruction, decode_array_size, decode_hash_size
from ..vm.opcodes import Opcode
from .provenance import Origin, table_origin, trace_register

__all__ = ["ReturnSite", "ReturnVerdict", "classify_return", "table_shape_at"]

_VALUE_SHAPES: Dict[Origin, ReturnShape] = {
    Origin.CALL: ReturnShape.CALL,
    Origin.READ: ReturnShape.UPVALUE,
    Origin.LITERAL: ReturnShape.CONSTANT,
}


@dataclass(frozen=True)
class ReturnSite:
    """Classification of one return instruction.

    ``table_pc`` is the ``NEWTABLE`` feeding the returned register when the
    shape is TABLE, otherwise -1.
    """

    shape: ReturnShape
    table_pc: int = -1


def _single_value(
    instructions: Sequence[Instruction], pc: int, reg: int, windows: ScanWindows
) -> ReturnSite:
    table_pc = table_origin(instructions, pc, reg, windows.table)
    if table_pc >= 0:
        return ReturnSite(ReturnShape.TABLE, table_pc)
    traced = trace_register(instructions, pc, reg, windows.value)
    return ReturnSite(_VALUE_SHAPES.get(traced.origin, ReturnShape.UNKNOWN))


def classify_return(
    instructions: Sequence[Instruction],
    pc: int,
    windows: ScanWindows = DEFAULT_WINDOWS,
) -> ReturnSite:
    """Classify the return instruction at ``pc``."""

    ins = instructions[pc]
    opcode = ins.opcode
    if opcode is Opcode.RETURN0:
        return ReturnSite(ReturnShape.VOID)
    if opcode is Opcode.RETURN1:
        return _single_value(instructions, pc, ins.a, windows)
    if opcode is not Opcode.RETURN:
        raise ValueError(f"instruction at pc {pc} is {ins.name}, not a return")

    # RETURN A B: B - 1 values starting at R[A], B == 0 up to the stack top
    if ins.b == 0:
        return ReturnSite(ReturnShape.MULTI)
    if ins.b == 1:
        return ReturnSite(ReturnShape.VOID)
    if ins.b == 2:
        return _single_value(instructions, pc, ins.a, windows)
    return ReturnSite(ReturnShape.MULTI)


def table_shape_at(instructions: Sequence[Instruction], pc: int) -> TableShape:
    """Decode the preallocation sizes of the ``NEWTABLE`` at ``pc``."""

    ins = instructions[pc]
    return TableShape.sized(decode_array_size(instructions, pc), decode_hash_size(ins.b))


class ReturnVerdict:
    """Fold return-site shapes into one per-function shape.

    VOID and UNKNOWN are weak and give way to any strong shape.  Two distinct
    strong shapes make the verdict MIXED, which is final.  VOID only replaces
    the initial UNKNOWN while no site has returned a value; otherwise the
    trailing ``RETURN0`` every function ends with would erase it.
    """

    def __init__(self) -> None:
        self.shape = ReturnShape.UNKNOWN
        self.table: Optional[TableShape] = None
        self._returned_value = False

    def observe(self, site: ReturnSite, table: Optional[TableShape] = None) -> None:
        shape = site.shape
        if self.shape is not ReturnShape.MIXED:
            if not shape.is_weak:
                if self.shape.is_weak:
                    self.shape = shape
                elif shape is not self.shape:
                    self.shape = ReturnShape.MIXED
            elif (
                shape is ReturnShape.VOID
                and self.shape is ReturnShape.UNKNOWN
                and not self._returned_value
            ):
                self.shape = ReturnShape.VOID
        if shape is not ReturnShape.VOID:
            self._returned_value = True
        if shape is ReturnShape.TABLE and table is not None:
            self.table = table
