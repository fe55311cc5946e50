"""Depth-first prototype walk and the global-environment registry.

Records are numbered in preorder: a function's record is appended before any
of its children are visited, so every child index is larger than its
parent's.  Assignments of closures to globals are seen before the closure's
own record exists; they are parked as :class:`PendingBinding` entries and
linked once the assigning function's subtree has been walked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from ..config import DEFAULT_WINDOWS, ScanWindows
from ..io.proto import Prototype
from ..report import (
    ENV_TABLE_NAME,
    UNRESOLVED_NAME,
    ClosureRef,
    ConstantValue,
    FunctionRecord,
    GlobalBinding,
    Report,
    ReturnShape,
    TableShape,
)
from ..vm.instruction import Instruction, decode_all
from ..vm.opcodes import CALL_OPCODES, RETURN_OPCODES, Opcode
from .calls import build_call_site
from .provenance import Origin, closure_origin
from .returns import ReturnVerdict, classify_return, table_shape_at

LOG = logging.getLogger(__name__)

__all__ = ["GlobalRegistry", "PendingBinding", "FunctionWalker", "analyze"]


@dataclass(frozen=True)
class PendingBinding:
    """A global assigned a closure whose record is not built yet.

    ``child_slot`` is the closure's position in the assigning prototype's
    ``protos`` list.
    """

    slot: int
    child_slot: int


class GlobalRegistry:
    """Names written to the global environment, deduplicated by exact name."""

    def __init__(self) -> None:
        self.bindings: List[GlobalBinding] = []
        self._slots: Dict[str, int] = {}
        self._claimed: Set[int] = set()

    def __len__(self) -> int:
        return len(self.bindings)

    def upsert(self, name: str, is_function: bool) -> int:
        """Record a write to ``name`` and return its slot.

        A repeated name keeps its slot; writing a closure promotes
        ``is_function`` but never touches a resolved index.
        """

        slot = self._slots.get(name)
        if slot is None:
            slot = len(self.bindings)
            self._slots[name] = slot
            self.bindings.append(GlobalBinding(name=name, is_function=is_function))
        elif is_function:
            self.bindings[slot].is_function = True
        return slot

    def claim(self, slot: int) -> bool:
        """Reserve ``slot`` for the first closure write seen in walk order.

        Children finish before their parent, so resolution order differs
        from write order; only the claiming write may set the index.
        """

        if slot in self._claimed:
            return False
        self._claimed.add(slot)
        return True

    def resolve(self, slot: int, function_index: int) -> bool:
        binding = self.bindings[slot]
        if binding.function_index >= 0:
            return False
        binding.function_index = function_index
        return True


class FunctionWalker:
    """Builds a :class:`Report` for one prototype tree.

    A walker owns the report it is building; use a fresh instance per tree.
    """

    def __init__(self, windows: ScanWindows = DEFAULT_WINDOWS):
        self.windows = windows
        self.report = Report()
        self.registry = GlobalRegistry()

    def run(self, proto: Prototype) -> Report:
        self._visit(proto)
        self.report.globals = self.registry.bindings
        return self.report

    # ------------------------------------------------------------------
    # traversal
    # ------------------------------------------------------------------
    def _visit(self, proto: Prototype) -> int:
        index = len(self.report.functions)
        record = self._describe(proto)
        self.report.functions.append(record)
        pending = self._scan(proto, record)

        for child in proto.protos:
            record.child_proto_indices.append(len(self.report.functions))
            self._visit(child)

        self._resolve_pending(index, pending)
        LOG.debug(
            "function %d (%s:%d) return=%s calls=%d children=%d",
            index,
            record.source,
            record.line_defined,
            record.return_kind.name,
            len(record.call_sites),
            len(record.child_proto_indices),
        )
        return index

    def _resolve_pending(self, index: int, pending: Sequence[PendingBinding]) -> None:
        children = self.report.functions[index].child_proto_indices
        for entry in pending:
            if not 0 <= entry.child_slot < len(children):
                LOG.warning(
                    "no function record for global %r", self.registry.bindings[entry.slot].name
                )
                continue
            self.registry.resolve(entry.slot, children[entry.child_slot])

    # ------------------------------------------------------------------
    # per-function passes
    # ------------------------------------------------------------------
    @staticmethod
    def _describe(proto: Prototype) -> FunctionRecord:
        params = proto.param_names()
        return FunctionRecord(
            source=proto.source if proto.source is not None else UNRESOLVED_NAME,
            line_defined=proto.line_defined,
            last_line=proto.last_line_defined,
            param_count=proto.num_params,
            is_vararg=bool(proto.is_vararg),
            is_method=bool(params) and params[0] == "self",
            param_names=params,
            upvalue_names=proto.upvalue_names(),
            constants=[ConstantValue.from_value(value) for value in proto.constants],
        )

    def _scan(self, proto: Prototype, record: FunctionRecord) -> List[PendingBinding]:
        instructions = decode_all(proto.code)
        verdict = ReturnVerdict()
        last_table: Optional[TableShape] = None
        shapes: Dict[int, TableShape] = {}
        pending: List[PendingBinding] = []

        for ins in instructions:
            opcode = ins.opcode
            pc = ins.index
            if opcode is Opcode.NEWTABLE:
                last_table = shapes[pc] = table_shape_at(instructions, pc)
            elif opcode in RETURN_OPCODES:
                site = classify_return(instructions, pc, self.windows)
                table = None
                if site.table_pc >= 0:
                    # the feeding NEWTABLE precedes pc, so it is decoded already
                    table = shapes[site.table_pc]
                elif site.shape is ReturnShape.TABLE:
                    table = last_table
                verdict.observe(site, table)
            elif opcode is Opcode.CLOSURE:
                self._note_closure(proto, record, ins)
            elif opcode is Opcode.SETTABUP:
                entry = self._note_global_write(proto, instructions, ins)
                if entry is not None:
                    pending.append(entry)
            elif opcode is Opcode.VARARG:
                record.is_vararg_used = True
            elif opcode is Opcode.GETTABUP:
                key = proto.string_constant(ins.c)
                if key is not None:
                    if proto.is_env_upvalue(ins.b):
                        table_name = ENV_TABLE_NAME
                    else:
                        table_name = proto.upvalue_name(ins.b) or UNRESOLVED_NAME
                    record.add_read(table_name, key)
            elif opcode is Opcode.GETFIELD:
                key = proto.string_constant(ins.c)
                if key is not None:
                    record.add_read(UNRESOLVED_NAME, key)
            elif opcode in CALL_OPCODES:
                record.call_sites.append(build_call_site(proto, instructions, pc, self.windows))

        record.return_kind = verdict.shape
        record.table_info = verdict.table if verdict.shape is ReturnShape.TABLE else None
        return pending

    @staticmethod
    def _note_closure(proto: Prototype, record: FunctionRecord, ins: Instruction) -> None:
        if ins.bx >= len(proto.protos):
            return
        child = proto.protos[ins.bx]
        if child.upvalues:
            record.closures.append(
                ClosureRef(line_defined=child.line_defined, upvalue_count=len(child.upvalues))
            )

    def _note_global_write(
        self, proto: Prototype, instructions: Sequence[Instruction], ins: Instruction
    ) -> Optional[PendingBinding]:
        # SETTABUP A B C: UpValue[A][K[B]] := RK(C)
        if not proto.is_env_upvalue(ins.a):
            return None
        name = proto.string_constant(ins.b)
        if name is None:
            return None

        child_slot = -1
        if not ins.k:
            traced = closure_origin(instructions, ins.index, ins.c, self.windows.closure)
            if traced.origin is Origin.CLOSURE:
                child_slot = instructions[traced.pc].bx

        slot = self.registry.upsert(name, child_slot >= 0)
        if child_slot < 0 or not self.registry.claim(slot):
            return None
        return PendingBinding(slot=slot, child_slot=child_slot)


def analyze(proto: Prototype, *, windows: Optional[ScanWindows] = None) -> Report:
    """Analyze ``proto`` and everything nested in it."""

    return FunctionWalker(windows or DEFAULT_WINDOWS).run(proto)
