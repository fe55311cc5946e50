"""Custom exception hierarchy for the bytecode report tooling."""

from __future__ import annotations


class LuReportError(Exception):
    """Base class for all report related errors."""


class ChunkFormatError(LuReportError):
    """Raised when a binary chunk is truncated or was not produced by Lua 5.4."""


class CompileError(LuReportError):
    """Raised when the Lua front-end rejects a source text."""


__all__ = ["LuReportError", "ChunkFormatError", "CompileError"]
