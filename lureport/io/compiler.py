"""Compile Lua source text into prototypes through the embedded runtime.

The Lua 5.4 interpreter bundled with :mod:`lupa` does the parsing and code
generation; ``string.dump`` hands the resulting function back as a binary
chunk which :mod:`lureport.io.undump` turns into a :class:`Prototype`.  The
compiled function is never called.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from lupa import lua54

from ..exceptions import ChunkFormatError, CompileError
from .proto import Prototype
from .undump import load_chunk

LOG = logging.getLogger(__name__)

__all__ = ["compile_chunk", "compile_source", "compile_prototype"]

Source = Union[str, bytes]

_DUMP_HELPER = """
function(source, chunkname, mode, strip)
  local fn, err = load(source, chunkname, mode)
  if not fn then
    return nil, err
  end
  return string.dump(fn, strip), nil
end
"""


def _as_bytes(value: Source) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def compile_chunk(
    source: Source, chunkname: str = "=?", *, strip: bool = False, binary: bool = False
) -> bytes:
    """Return the binary chunk for ``source`` or raise :class:`CompileError`.

    With ``binary`` the input is an existing chunk that is loaded and dumped
    again, which is how debug information gets stripped from it.

    A fresh :class:`lupa.lua54.LuaRuntime` is created for every call so
    concurrent compilations never share interpreter state.
    """

    runtime = lua54.LuaRuntime(encoding=None)
    helper = runtime.eval(_DUMP_HELPER)
    try:
        chunk, error = helper(
            _as_bytes(source), _as_bytes(chunkname), b"b" if binary else b"t", bool(strip)
        )
    except lua54.LuaError as exc:
        raise CompileError(str(exc)) from exc
    if chunk is None:
        message = error.decode("utf-8", errors="replace") if isinstance(error, bytes) else str(error)
        raise CompileError(message)
    return bytes(chunk)


def compile_source(source: Source, chunkname: str = "=?", *, strip: bool = False) -> Optional[bytes]:
    """Like :func:`compile_chunk` but reports failure as ``None``."""

    try:
        return compile_chunk(source, chunkname, strip=strip)
    except CompileError as exc:
        LOG.warning("compilation of %s failed: %s", chunkname, exc)
        return None


def compile_prototype(source: Source, chunkname: str = "=?") -> Optional[Prototype]:
    """Compile ``source`` and decode the main prototype, ``None`` on failure."""

    chunk = compile_source(source, chunkname)
    if chunk is None:
        return None
    try:
        return load_chunk(chunk)
    except ChunkFormatError as exc:
        LOG.warning("runtime produced an unreadable chunk for %s: %s", chunkname, exc)
        return None
