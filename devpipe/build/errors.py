"""
Stage results and error policy.

Stages report recoverable problems as values in a StageResult. The
ErrorPolicy decides which kinds are fatal and which are only logged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Optional

from devpipe.core.utils import log


class ErrorKind(Enum):
    """What went wrong."""
    TRANSPILE = auto()     # Transpiler rejected a source file
    FILE_TIMEOUT = auto()  # Bundle never appeared within the wait timeout
    PROCESS = auto()       # Spawned runtime failed or wrote to stderr
    STARTUP = auto()       # Server or watcher could not start
    CONFIG = auto()        # Configuration missing or invalid


class StageError(Exception):
    """A single stage failure, carrying its kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        path: Optional[Path] = None,
        detail: str = "",
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.path = path
        self.detail = detail

    def describe(self) -> str:
        text = self.message
        if self.path is not None:
            text = f"{text} ({self.path})"
        if self.detail:
            text = f"{text}\n{self.detail.rstrip()}"
        return text


class PipelineAbort(Exception):
    """Raised by ErrorPolicy when a stage reports a fatal error."""

    def __init__(self, error: StageError):
        super().__init__(error.describe())
        self.error = error


@dataclass
class StageResult:
    """Outcome of one stage run."""

    stage: str
    errors: list[StageError] = field(default_factory=list)
    value: Any = None

    @property
    def ok(self) -> bool:
        return not self.errors

    def add(self, error: StageError) -> None:
        self.errors.append(error)


@dataclass(frozen=True)
class ErrorPolicy:
    """Which error kinds stop the pipeline. Everything else is logged."""

    fatal: frozenset[ErrorKind] = frozenset({ErrorKind.STARTUP, ErrorKind.CONFIG})

    def is_fatal(self, kind: ErrorKind) -> bool:
        return kind in self.fatal

    def handle(self, result: StageResult) -> StageResult:
        """Log every error in the result; raise PipelineAbort on a fatal one."""
        for error in result.errors:
            log.error(f"[{result.stage}] {error.kind.name.lower()}: {error.describe()}")
        for error in result.errors:
            if self.is_fatal(error.kind):
                raise PipelineAbort(error)
        return result
