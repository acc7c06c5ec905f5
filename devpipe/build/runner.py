"""
Bundle runner for terminal mode.

Waits for the bundle to exist and settle, runs it in the configured
runtime, and prints its timing and output.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Optional

from devpipe.build.config import PipelineConfig, WaitOptions
from devpipe.build.errors import ErrorKind, StageError, StageResult
from devpipe.core.timing import format_duration
from devpipe.core.utils import clear_screen, log, run_cmd, terminal_columns

TIME_LABEL = "Execution time: "


def wait_for_file(
    path: Path,
    wait: WaitOptions,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Block until ``path`` exists and its size is stable for ``wait.window``.

    All WaitOptions values are milliseconds.

    Raises:
        StageError: FILE_TIMEOUT if the file is not ready within ``wait.timeout``.
    """
    if wait.delay > 0:
        sleep(wait.delay / 1000)

    start = clock()
    deadline = start + wait.timeout / 1000
    interval = max(wait.interval, 1) / 1000
    window = wait.window / 1000

    last_size: Optional[int] = None
    stable_since: Optional[float] = None

    while True:
        now = clock()
        if path.exists():
            size = path.stat().st_size
            if size != last_size:
                last_size = size
                stable_since = now
            if stable_since is not None and now - stable_since >= window:
                return
        else:
            last_size = None
            stable_since = None

        if now >= deadline:
            raise StageError(
                ErrorKind.FILE_TIMEOUT,
                f"Timed out after {wait.timeout}ms waiting for file",
                path=path,
            )
        sleep(interval)


def format_timing_line(seconds: float, columns: int) -> str:
    """``Execution time: 12.3ms`` padded with dashes to the terminal width."""
    label = f"{TIME_LABEL}{format_duration(seconds)} "
    return label + "-" * max(columns - len(label), 0)


def run_bundle(
    config: PipelineConfig,
    bundle: Optional[Path] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> StageResult:
    """Wait for the bundle, run it, and print timing plus stdout.

    A timeout is reported without spawning. A non-zero exit or anything
    written to stderr is reported as a PROCESS error.
    """
    result = StageResult("run")
    bundle = bundle or config.bundle_path

    clear_screen()

    try:
        wait_for_file(bundle, config.tool_options.wait, sleep=sleep)
    except StageError as e:
        result.add(e)
        return result

    cmd = [*config.tool_options.runner.command, str(bundle)]
    start = time.perf_counter()
    try:
        proc = run_cmd(cmd, cwd=bundle.parent, check=False)
    except FileNotFoundError:
        result.add(StageError(ErrorKind.PROCESS, f"Runtime not found: {cmd[0]}"))
        return result
    elapsed = time.perf_counter() - start

    log.raw(format_timing_line(elapsed, terminal_columns()))
    log.raw("")
    log.raw(proc.stdout.rstrip("\n"))

    if proc.returncode != 0:
        result.add(StageError(
            ErrorKind.PROCESS,
            f"{bundle.name} exited with code {proc.returncode}",
            detail=proc.stderr or "",
        ))
    elif proc.stderr and proc.stderr.strip():
        result.add(StageError(
            ErrorKind.PROCESS,
            f"{bundle.name} wrote to stderr",
            detail=proc.stderr,
        ))

    result.value = proc.returncode
    return result
