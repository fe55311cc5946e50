"""Input side of the analyzer: prototypes, the chunk reader and the compiler."""

from importlib import import_module
from typing import Any

from .proto import LocalVar, Prototype, UpvalueDesc
from .undump import ChunkReader, is_binary_chunk, load_chunk

__all__ = [
    "LocalVar",
    "Prototype",
    "UpvalueDesc",
    "ChunkReader",
    "is_binary_chunk",
    "load_chunk",
    "compile_chunk",
    "compile_source",
    "compile_prototype",
]

# The compiler pulls in the Lua runtime, so it is only imported on first use.
_LAZY = {"compile_chunk", "compile_source", "compile_prototype"}


def __getattr__(name: str) -> Any:  # pragma: no cover - trivial delegator
    if name in _LAZY:
        module = import_module(".compiler", __name__)
        value = getattr(module, name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
