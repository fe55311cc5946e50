"""Command line entry point: compile Lua files or report on them."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from . import __version__
from .analysis.walker import analyze
from .config import BYTECODE_FILENAME, REPORT_FILENAME, windows_from_env
from .exceptions import LuReportError
from .io.proto import Prototype
from .io.undump import is_binary_chunk, load_chunk
from .logging_config import configure_logging
from .report import release_report, write_report_json
from .utils import write_bytes, write_with

LOG = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lureport",
        description="Compile a Lua 5.4 file, or write a static report of its functions.",
    )
    parser.add_argument("input", help="Lua source file or precompiled binary chunk")
    parser.add_argument(
        "--report",
        action="store_true",
        help=f"write the JSON report to {REPORT_FILENAME} instead of bytecode",
    )
    parser.add_argument("-o", "--output", help="output file name")
    parser.add_argument("-s", "--strip", action="store_true", help="strip debug information")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("--log-file", help="also write log records to this file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _load_prototype(data: bytes, chunkname: str) -> Prototype:
    if is_binary_chunk(data):
        return load_chunk(data)

    from .io.compiler import compile_chunk

    return load_chunk(compile_chunk(data, chunkname))


def _emit_report(data: bytes, chunkname: str, output: Path) -> None:
    proto = _load_prototype(data, chunkname)
    report = analyze(proto, windows=windows_from_env())
    try:
        write_with(output, lambda handle: write_report_json(report, handle))
        LOG.info("wrote report for %d functions to %s", len(report.functions), output)
    finally:
        release_report(report)


def _emit_bytecode(data: bytes, chunkname: str, output: Path, strip: bool) -> None:
    from .io.compiler import compile_chunk

    chunk = compile_chunk(data, chunkname, strip=strip, binary=is_binary_chunk(data))
    write_bytes(output, chunk)
    LOG.info("wrote %d bytes of bytecode to %s", len(chunk), output)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.log_file)

    source = Path(args.input)
    try:
        data = source.read_bytes()
    except OSError as exc:
        LOG.error("cannot read %s: %s", source, exc)
        return 1

    chunkname = f"@{args.input}"
    try:
        if args.report:
            if args.strip:
                LOG.warning("--strip has no effect together with --report")
            _emit_report(data, chunkname, Path(args.output or REPORT_FILENAME))
        else:
            _emit_bytecode(data, chunkname, Path(args.output or BYTECODE_FILENAME), args.strip)
    except LuReportError as exc:
        LOG.error("%s: %s", source, exc)
        return 1
    except OSError as exc:
        LOG.error("cannot write output: %s", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI wrapper
    raise SystemExit(main())
