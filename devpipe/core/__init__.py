"""
devpipe.core - Foundation layer for the devpipe CLI.

Exports logging, timing and runtime utilities.
"""

from devpipe.core.utils import (
    # Logging
    log,
    Logger,
    # Constants
    CONFIG_FILE_NAME,
    SOURCE_DIR_NAME,
    BUILD_DIR_NAME,
    # Terminal utilities
    terminal_columns,
    clear_screen,
    # Runtime utilities
    run_cmd,
)
from devpipe.core.timing import TimingContext, format_duration, timing_summary

__all__ = [
    # Logging
    "log",
    "Logger",
    # Constants
    "CONFIG_FILE_NAME",
    "SOURCE_DIR_NAME",
    "BUILD_DIR_NAME",
    # Terminal utilities
    "terminal_columns",
    "clear_screen",
    # Runtime utilities
    "run_cmd",
    # Timing
    "TimingContext",
    "format_duration",
    "timing_summary",
]
