"""Lua 5.4 instruction set support: opcode tables and word decoding."""

from __future__ import annotations

from .instruction import (
    Instruction,
    decode,
    decode_all,
    decode_array_size,
    decode_hash_size,
)
from .opcodes import Opcode, OpMode, registers_written, writes_register

__all__ = [
    "Instruction",
    "Opcode",
    "OpMode",
    "decode",
    "decode_all",
    "decode_array_size",
    "decode_hash_size",
    "registers_written",
    "writes_register",
]
