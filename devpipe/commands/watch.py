"""
Watch mode for devpipe.

Monitors the source tree and triggers a rebuild callback on change.
"""

from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Callable, Optional, Sequence

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent

from devpipe.build.errors import ErrorKind, StageError
from devpipe.core.utils import log


ChangeCallback = Callable[[list[Path]], None]


# =============================================================================
# Pattern Matching
# =============================================================================


def glob_to_regex(pattern: str) -> re.Pattern:
    """Compile a ``**``-aware glob into a regex over relative POSIX paths."""
    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


class PathFilter:
    """Decides whether a path under ``root`` matches any watched pattern."""

    def __init__(self, root: Path, patterns: Sequence[str]):
        self.root = root.resolve()
        self.patterns = list(patterns)
        self._compiled = [glob_to_regex(p) for p in self.patterns]

    def matches(self, path: Path) -> bool:
        # Hidden files and directories are editor noise
        try:
            rel = path.resolve().relative_to(self.root)
        except ValueError:
            return False
        if any(part.startswith(".") for part in rel.parts):
            return False
        rel_str = rel.as_posix()
        return any(rx.match(rel_str) for rx in self._compiled)


# =============================================================================
# Debouncer
# =============================================================================


class Debouncer:
    """Batches rapid file change events into a single callback.

    Collects paths for ``delay`` seconds after the last event, then calls
    ``callback`` once with all of them. A delay of zero or less calls the
    callback immediately for each event.
    """

    def __init__(self, delay: float, callback: ChangeCallback):
        self.delay = delay
        self.callback = callback
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._pending_paths: list[Path] = []

    def trigger(self, path: Path) -> None:
        """Register a change event. Resets the debounce timer."""
        if self.delay <= 0:
            self.callback([path])
            return

        with self._lock:
            if path not in self._pending_paths:
                self._pending_paths.append(path)

            if self._timer is not None:
                self._timer.cancel()

            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        """Called after debounce period."""
        with self._lock:
            if not self._pending_paths:
                return
            paths = list(self._pending_paths)
            self._pending_paths.clear()
            self._timer = None

        self.callback(paths)

    def flush(self) -> None:
        """Fire any pending batch now."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._fire()

    def cancel(self) -> None:
        """Cancel any pending debounce timer."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending_paths.clear()


# =============================================================================
# File System Event Handler
# =============================================================================


class SourceEventHandler(FileSystemEventHandler):
    """Forwards create/modify/delete/move events for watched files."""

    def __init__(self, path_filter: PathFilter, debouncer: Debouncer):
        super().__init__()
        self.path_filter = path_filter
        self.debouncer = debouncer

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle(event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        # Editors often save via rename; either end of the move counts
        if not self._handle(event.dest_path):
            self._handle(event.src_path)

    def _handle(self, raw_path) -> bool:
        path = Path(raw_path)
        if not self.path_filter.matches(path):
            return False
        log.dim(f"Change detected: {path.name}")
        self.debouncer.trigger(path)
        return True


# =============================================================================
# Subscription
# =============================================================================


class WatchHandle:
    """A running watch subscription. Stopping it ends the watch."""

    def __init__(self, observer, debouncer: Debouncer):
        self._observer = observer
        self._debouncer = debouncer
        self._stopped = False

    @property
    def active(self) -> bool:
        return not self._stopped

    def stop(self, timeout: float = 5) -> None:
        """Stop watching. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        self._debouncer.cancel()
        self._observer.stop()
        self._observer.join(timeout=timeout)

    def __enter__(self) -> "WatchHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()


def watch_sources(
    root: Path,
    patterns: Sequence[str],
    callback: ChangeCallback,
    debounce: float = 0.1,
    observer=None,
) -> WatchHandle:
    """Start watching ``root`` recursively for files matching ``patterns``.

    Raises:
        StageError: STARTUP if the watcher cannot be scheduled or started.
    """
    observer = observer if observer is not None else Observer()
    debouncer = Debouncer(debounce, callback)
    handler = SourceEventHandler(PathFilter(root, patterns), debouncer)

    try:
        observer.schedule(handler, str(root), recursive=True)
        observer.start()
    except (OSError, RuntimeError) as e:
        raise StageError(
            ErrorKind.STARTUP,
            f"Could not watch {root}: {e}",
            path=root,
        ) from e

    log.info(f"Watching: {root} ({', '.join(patterns)})")
    return WatchHandle(observer, debouncer)
