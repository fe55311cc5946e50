"""Atomic file output for reports and compiled chunks."""

from __future__ import annotations

import os
import tempfile
from typing import IO, Callable

__all__ = ["write_bytes", "write_with"]


def _ensure_directory(path: str) -> str:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    return directory


def _atomic_write(
    path: str | os.PathLike[str],
    writer: Callable[[IO], None],
    mode: str,
    **open_kwargs,
) -> None:
    target = os.fspath(path)
    directory = _ensure_directory(target)
    fd, temp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".partial", dir=directory)
    try:
        with os.fdopen(fd, mode, **open_kwargs) as handle:
            writer(handle)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    except BaseException:
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        raise


def write_with(
    path: str | os.PathLike[str],
    writer: Callable[[IO[str]], None],
    *,
    encoding: str = "utf-8",
) -> None:
    """Let ``writer`` fill a text stream that replaces ``path`` once complete."""

    _atomic_write(path, writer, "w", encoding=encoding, newline="\n")


def write_bytes(path: str | os.PathLike[str], data: bytes) -> None:
    """Write ``data`` to ``path`` without leaving a partial file behind."""

    _atomic_write(path, lambda handle: handle.write(data), "wb")
