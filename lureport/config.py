"""Shared constants and scan limits for the analyzer."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

__all__ = [
    "LUA_VERSION",
    "REPORT_FILENAME",
    "BYTECODE_FILENAME",
    "ScanWindows",
    "DEFAULT_WINDOWS",
    "windows_from_env",
]

# Version tag emitted at the top of every report.
LUA_VERSION = "5.4"

# Fixed output names used by the CLI when ``-o`` is not given.
REPORT_FILENAME = "report.json"
BYTECODE_FILENAME = "luac.out"

TABLE_WINDOW_ENV = "LUREPORT_TABLE_WINDOW"


@dataclass(frozen=True)
class ScanWindows:
    """Upper bounds (in instructions) for every backward scan.

    ``closure`` bounds the closure-origin trace used for global writes,
    ``value`` the value-source trace behind single-value returns, ``callee``
    and ``callee_base`` the call-site resolver and its secondary base lookup.
    ``table`` bounds the table-origin trace; a table constructor puts one
    store per field between the ``NEWTABLE`` and the return.
    """

    closure: int = 16
    value: int = 24
    callee: int = 32
    callee_base: int = 16
    table: int = 512


DEFAULT_WINDOWS = ScanWindows()


def windows_from_env(environ: Optional[Mapping[str, str]] = None) -> ScanWindows:
    """Return :data:`DEFAULT_WINDOWS` adjusted by ``LUREPORT_TABLE_WINDOW``."""

    env = os.environ if environ is None else environ
    raw = env.get(TABLE_WINDOW_ENV, "").strip()
    if not raw:
        return DEFAULT_WINDOWS
    try:
        value = int(raw, 10)
    except ValueError:
        return DEFAULT_WINDOWS
    if value <= 0:
        return DEFAULT_WINDOWS
    return replace(DEFAULT_WINDOWS, table=value)
