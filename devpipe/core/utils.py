"""
Shared utilities for the devpipe CLI.
"""

from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional, TextIO

# =============================================================================
# Constants
# =============================================================================

# Looked up in the project directory when --config is not given
CONFIG_FILE_NAME = "devpipe.json"

# Standard project layout, relative to the project directory
SOURCE_DIR_NAME = "source"
BUILD_DIR_NAME = "build"


# =============================================================================
# Logging
# =============================================================================


class Logger:
    """Simple colored logger with --no-color support.

    Errors go to stderr, everything else to stdout.
    """

    COLORS = {
        "reset": "\033[0m",
        "red": "\033[91m",
        "green": "\033[92m",
        "yellow": "\033[93m",
        "blue": "\033[94m",
        "magenta": "\033[95m",
        "cyan": "\033[96m",
        "bold": "\033[1m",
        "dim": "\033[2m",
    }

    def __init__(self, use_color: Optional[bool] = None):
        if use_color is None:
            self._use_color = sys.stdout.isatty()
        else:
            self._use_color = use_color

    def set_color(self, use_color: bool) -> None:
        """Set whether to use color output."""
        self._use_color = use_color

    def _color(self, text: str, color: str) -> str:
        if not self._use_color:
            return text
        return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"

    def _emit(self, line: str, stream: Optional[TextIO] = None) -> None:
        # Resolve the stream at call time so pytest's capsys sees the output
        print(line, file=stream or sys.stdout, flush=True)

    def header(self, message: str) -> None:
        """Print a section header."""
        self._emit(f"\n{self._color('===', 'cyan')} {self._color(message, 'bold')} {self._color('===', 'cyan')}")

    def info(self, message: str) -> None:
        """Print an info message."""
        self._emit(f"  {message}")

    def success(self, message: str) -> None:
        """Print a success message."""
        self._emit(f"  {self._color('[OK]', 'green')} {message}")

    def warning(self, message: str) -> None:
        """Print a warning message."""
        self._emit(f"  {self._color('[WARN]', 'yellow')} {message}")

    def error(self, message: str) -> None:
        """Print an error message to stderr."""
        self._emit(f"  {self._color('[ERROR]', 'red')} {message}", sys.stderr)

    def dim(self, message: str) -> None:
        """Print a dim/secondary message."""
        self._emit(f"  {self._color(message, 'dim')}")

    def raw(self, text: str) -> None:
        """Print text verbatim, without indentation or prefix."""
        self._emit(text)


# Global logger instance
log = Logger()


# =============================================================================
# Terminal Utilities
# =============================================================================


def terminal_columns(default: int = 80) -> int:
    """Current terminal width in columns."""
    return shutil.get_terminal_size((default, 24)).columns


def clear_screen() -> None:
    """Clear the terminal display (no-op when stdout is not a terminal)."""
    if sys.stdout.isatty():
        sys.stdout.write("\033[2J\033[H")
        sys.stdout.flush()


# =============================================================================
# Runtime Utilities
# =============================================================================


def run_cmd(
    cmd: list[str],
    cwd: Optional[Path] = None,
    input_text: Optional[str] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command capturing text output, with proper error handling."""
    try:
        return subprocess.run(
            cmd,
            cwd=cwd,
            input=input_text,
            capture_output=True,
            text=True,
            check=check,
        )
    except subprocess.CalledProcessError as e:
        log.error(f"Command failed: {' '.join(cmd)}")
        if e.stderr:
            log.error(f"stderr: {e.stderr.strip()}")
        raise
