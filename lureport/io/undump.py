"""Reader for Lua 5.4 binary chunks (the ``string.dump`` / ``luac`` format).

The layout follows ``lundump.c``: a fixed header that pins the integer and
float encodings, the upvalue count of the main closure, then one function
record per prototype with its children nested inline.  Sizes and small
integers use Lua's MSB-first 7-bit varint where the final byte carries the
``0x80`` marker.
"""

from __future__ import annotations

import logging
import struct
from typing import List, Optional, Tuple

from ..exceptions import ChunkFormatError
from .proto import Constant, LocalVar, Prototype, UpvalueDesc

LOG = logging.getLogger(__name__)

__all__ = ["LUA_SIGNATURE", "LUAC_VERSION", "ChunkReader", "is_binary_chunk", "load_chunk"]

LUA_SIGNATURE = b"\x1bLua"
LUAC_VERSION = 0x54
LUAC_FORMAT = 0
LUAC_DATA = b"\x19\x93\r\n\x1a\n"
LUAC_INT = 0x5678
LUAC_NUM = 370.5

# Constant tags (type | variant << 4) written by dumpConstants.
TAG_NIL = 0x00
TAG_FALSE = 0x01
TAG_TRUE = 0x11
TAG_INT = 0x03
TAG_FLOAT = 0x13
TAG_SHORT_STR = 0x04
TAG_LONG_STR = 0x14

_INT_FORMATS = {4: "i", 8: "q"}
_FLOAT_FORMATS = {4: "f", 8: "d"}


def is_binary_chunk(data: bytes) -> bool:
    return data.startswith(LUA_SIGNATURE)


class ChunkReader:
    """Sequential decoder over the bytes of one binary chunk."""

    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.pos = 0
        self.endian = "<"
        self.instruction_size = 4
        self.integer_format = "q"
        self.number_format = "d"

    # ------------------------------------------------------------------
    # primitive readers
    # ------------------------------------------------------------------
    def _read_bytes(self, count: int) -> bytes:
        if count < 0 or self.pos + count > len(self.data):
            raise ChunkFormatError(f"truncated chunk at offset {self.pos}")
        value = self.data[self.pos : self.pos + count]
        self.pos += count
        return value

    def _read_byte(self) -> int:
        return self._read_bytes(1)[0]

    def _read_unsigned(self, limit: int) -> int:
        value = 0
        limit >>= 7
        while True:
            byte = self._read_byte()
            if value >= limit:
                raise ChunkFormatError(f"integer overflow at offset {self.pos}")
            value = (value << 7) | (byte & 0x7F)
            if byte & 0x80:
                return value

    def _read_size(self) -> int:
        return self._read_unsigned(2**63 - 1)

    def _read_int(self) -> int:
        return self._read_unsigned(2**31 - 1)

    def _read_integer(self) -> int:
        size = struct.calcsize(self.integer_format)
        return struct.unpack(self.endian + self.integer_format, self._read_bytes(size))[0]

    def _read_number(self) -> float:
        size = struct.calcsize(self.number_format)
        return struct.unpack(self.endian + self.number_format, self._read_bytes(size))[0]

    def _read_string(self) -> Optional[str]:
        size = self._read_size()
        if size == 0:
            return None
        raw = self._read_bytes(size - 1)
        return raw.decode("utf-8", errors="backslashreplace")

    # ------------------------------------------------------------------
    # header
    # ------------------------------------------------------------------
    def _check_header(self) -> None:
        if self._read_bytes(len(LUA_SIGNATURE)) != LUA_SIGNATURE:
            raise ChunkFormatError("not a binary chunk")
        version = self._read_byte()
        if version != LUAC_VERSION:
            raise ChunkFormatError(f"version mismatch: 0x{version:02x}")
        if self._read_byte() != LUAC_FORMAT:
            raise ChunkFormatError("format mismatch")
        if self._read_bytes(len(LUAC_DATA)) != LUAC_DATA:
            raise ChunkFormatError("corrupted chunk")

        self.instruction_size = self._read_byte()
        if self.instruction_size != 4:
            raise ChunkFormatError(f"unsupported Instruction size {self.instruction_size}")
        int_size = self._read_byte()
        num_size = self._read_byte()
        if int_size not in _INT_FORMATS or num_size not in _FLOAT_FORMATS:
            raise ChunkFormatError(
                f"unsupported lua_Integer/lua_Number sizes {int_size}/{num_size}"
            )
        self.integer_format = _INT_FORMATS[int_size]
        self.number_format = _FLOAT_FORMATS[num_size]

        raw_int = self._read_bytes(int_size)
        for endian in ("<", ">"):
            if struct.unpack(endian + self.integer_format, raw_int)[0] == LUAC_INT:
                self.endian = endian
                break
        else:
            raise ChunkFormatError("integer format mismatch")
        if self._read_number() != LUAC_NUM:
            raise ChunkFormatError("float format mismatch")

    # ------------------------------------------------------------------
    # function records
    # ------------------------------------------------------------------
    def _read_code(self) -> List[int]:
        count = self._read_int()
        raw = self._read_bytes(count * 4)
        return list(struct.unpack(f"{self.endian}{count}I", raw)) if count else []

    def _read_constants(self) -> List[Constant]:
        constants: List[Constant] = []
        for _ in range(self._read_int()):
            tag = self._read_byte()
            if tag == TAG_NIL:
                constants.append(None)
            elif tag == TAG_FALSE:
                constants.append(False)
            elif tag == TAG_TRUE:
                constants.append(True)
            elif tag == TAG_INT:
                constants.append(self._read_integer())
            elif tag == TAG_FLOAT:
                constants.append(self._read_number())
            elif tag in (TAG_SHORT_STR, TAG_LONG_STR):
                value = self._read_string()
                constants.append("" if value is None else value)
            else:
                raise ChunkFormatError(f"unknown constant tag 0x{tag:02x}")
        return constants

    def _read_upvalues(self) -> List[UpvalueDesc]:
        upvalues: List[UpvalueDesc] = []
        for _ in range(self._read_int()):
            instack = bool(self._read_byte())
            index = self._read_byte()
            kind = self._read_byte()
            upvalues.append(UpvalueDesc(name=None, instack=instack, index=index, kind=kind))
        return upvalues

    def _read_debug(self, proto: Prototype) -> None:
        count = self._read_int()
        proto.lineinfo = list(struct.unpack(f"{count}b", self._read_bytes(count))) if count else []

        abslines: List[Tuple[int, int]] = []
        for _ in range(self._read_int()):
            pc = self._read_int()
            line = self._read_int()
            abslines.append((pc, line))
        proto.abslineinfo = abslines

        locvars: List[LocalVar] = []
        for _ in range(self._read_int()):
            name = self._read_string() or ""
            start_pc = self._read_int()
            end_pc = self._read_int()
            locvars.append(LocalVar(name=name, start_pc=start_pc, end_pc=end_pc))
        proto.locvars = locvars

        names = [self._read_string() for _ in range(self._read_int())]
        for index, name in enumerate(names):
            if index < len(proto.upvalues):
                proto.upvalues[index].name = name

    def _read_function(self, parent_source: Optional[str]) -> Prototype:
        proto = Prototype()
        source = self._read_string()
        proto.source = parent_source if source is None else source
        proto.line_defined = self._read_int()
        proto.last_line_defined = self._read_int()
        proto.num_params = self._read_byte()
        proto.is_vararg = bool(self._read_byte())
        proto.max_stack_size = self._read_byte()
        proto.code = self._read_code()
        proto.constants = self._read_constants()
        proto.upvalues = self._read_upvalues()
        proto.protos = [self._read_function(proto.source) for _ in range(self._read_int())]
        self._read_debug(proto)
        return proto

    def read(self) -> Prototype:
        self._check_header()
        main_upvalues = self._read_byte()
        main = self._read_function(None)
        if main_upvalues != len(main.upvalues):
            LOG.warning(
                "main closure declares %d upvalues but prototype has %d",
                main_upvalues,
                len(main.upvalues),
            )
        if self.pos != len(self.data):
            LOG.debug("ignoring %d trailing bytes after chunk", len(self.data) - self.pos)
        return main


def load_chunk(data: bytes) -> Prototype:
    """Decode a Lua 5.4 binary chunk into its main :class:`Prototype`."""

    return ChunkReader(data).read()
