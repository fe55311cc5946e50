"""Small helpers shared by the CLI: file output and terminal colours."""

from .io_utils import write_bytes, write_with
from .terminal import colorize_text

__all__ = ["write_bytes", "write_with", "colorize_text"]
