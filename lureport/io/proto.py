"""In-memory function prototypes as handed over by the Lua front-end."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

__all__ = ["Constant", "UpvalueDesc", "LocalVar", "Prototype"]

Constant = Union[str, int, float, bool, None]

MISSING_NAME = "(?)"


@dataclass
class UpvalueDesc:
    """Upvalue descriptor: where the captured variable lives in the parent."""

    name: Optional[str] = None
    instack: bool = False
    index: int = 0
    kind: int = 0


@dataclass
class LocalVar:
    name: str
    start_pc: int = 0
    end_pc: int = 0


@dataclass
class Prototype:
    """Compiled form of one Lua function.

    ``code`` holds raw 32-bit instruction words.  ``lineinfo`` is the dense
    per-instruction signed delta table and ``abslineinfo`` the sparse list of
    ``(pc, line)`` checkpoints; either may be empty when debug information
    was stripped.  Child prototypes appear in ``protos`` in the order their
    ``CLOSURE`` instructions index them.
    """

    source: Optional[str] = None
    line_defined: int = 0
    last_line_defined: int = 0
    num_params: int = 0
    is_vararg: bool = False
    max_stack_size: int = 2
    code: List[int] = field(default_factory=list)
    constants: List[Constant] = field(default_factory=list)
    upvalues: List[UpvalueDesc] = field(default_factory=list)
    protos: List["Prototype"] = field(default_factory=list)
    lineinfo: List[int] = field(default_factory=list)
    abslineinfo: List[Tuple[int, int]] = field(default_factory=list)
    locvars: List[LocalVar] = field(default_factory=list)

    def param_names(self) -> List[str]:
        names: List[str] = []
        for index in range(self.num_params):
            name = self.locvars[index].name if index < len(self.locvars) else None
            names.append(name or MISSING_NAME)
        return names

    def upvalue_name(self, index: int) -> Optional[str]:
        if 0 <= index < len(self.upvalues):
            return self.upvalues[index].name
        return None

    def upvalue_names(self) -> List[str]:
        return [upvalue.name or MISSING_NAME for upvalue in self.upvalues]

    def is_env_upvalue(self, index: int) -> bool:
        """Return ``True`` when upvalue ``index`` is the global environment.

        The environment is the upvalue named ``_ENV``; without debug names
        the main-chunk convention (upvalue 0) is assumed.
        """

        if not 0 <= index < len(self.upvalues):
            return index == 0
        name = self.upvalues[index].name
        if name is None:
            return index == 0
        return name == "_ENV"

    def string_constant(self, index: int) -> Optional[str]:
        """Return ``constants[index]`` when it exists and is a string."""

        if 0 <= index < len(self.constants):
            value = self.constants[index]
            if isinstance(value, str):
                return value
        return None
