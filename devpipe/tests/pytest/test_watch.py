"""
Tests for watch mode: pattern filtering, debouncing and subscriptions.
"""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from watchdog.events import (
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from devpipe.build.errors import ErrorKind, StageError
from devpipe.commands.watch import (
    Debouncer,
    PathFilter,
    SourceEventHandler,
    WatchHandle,
    glob_to_regex,
    watch_sources,
)


# =============================================================================
# Pattern Matching
# =============================================================================


@pytest.mark.evergreen
class TestGlobToRegex:
    """Globs match relative POSIX paths."""

    @pytest.mark.parametrize("path", ["a.js", "lib/a.js", "lib/deep/a.min.js"])
    def test_double_star_matches_any_depth(self, path: str) -> None:
        assert glob_to_regex("**/*.js").match(path)

    def test_single_star_stays_in_segment(self) -> None:
        assert glob_to_regex("*.js").match("a.js")
        assert not glob_to_regex("*.js").match("lib/a.js")

    def test_literal_name(self) -> None:
        assert glob_to_regex("index.html").match("index.html")
        assert not glob_to_regex("index.html").match("index.htmlx")
        assert not glob_to_regex("index.html").match("indexahtml")


@pytest.mark.evergreen
class TestPathFilter:
    """PathFilter limits events to watched files under the root."""

    def test_matches_scripts_and_html(self, tmp_path: Path) -> None:
        f = PathFilter(tmp_path, ["**/*.js", "index.html"])
        assert f.matches(tmp_path / "app.js")
        assert f.matches(tmp_path / "lib" / "x.js")
        assert f.matches(tmp_path / "index.html")
        assert not f.matches(tmp_path / "style.css")

    def test_ignores_hidden_and_outside(self, tmp_path: Path) -> None:
        f = PathFilter(tmp_path / "src", ["**/*.js"])
        assert not f.matches(tmp_path / "src" / ".cache" / "x.js")
        assert not f.matches(tmp_path / "other" / "x.js")


# =============================================================================
# Debouncer
# =============================================================================


@pytest.mark.evergreen
class TestDebouncer:
    """Debouncer batches events into one callback."""

    def test_zero_delay_dispatches_each_event(self) -> None:
        calls: list[list[Path]] = []
        debouncer = Debouncer(0, calls.append)

        debouncer.trigger(Path("a.js"))
        debouncer.trigger(Path("b.js"))

        assert calls == [[Path("a.js")], [Path("b.js")]]

    def test_burst_fires_once(self) -> None:
        fired = threading.Event()
        calls: list[list[Path]] = []

        def callback(paths: list[Path]) -> None:
            calls.append(paths)
            fired.set()

        debouncer = Debouncer(0.05, callback)
        debouncer.trigger(Path("a.js"))
        debouncer.trigger(Path("a.js"))
        debouncer.trigger(Path("b.js"))

        assert fired.wait(timeout=2)
        assert calls == [[Path("a.js"), Path("b.js")]]

    def test_flush_fires_immediately(self) -> None:
        calls: list[list[Path]] = []
        debouncer = Debouncer(60, calls.append)
        debouncer.trigger(Path("a.js"))

        debouncer.flush()

        assert calls == [[Path("a.js")]]

    def test_cancel_drops_pending(self) -> None:
        calls: list[list[Path]] = []
        debouncer = Debouncer(60, calls.append)
        debouncer.trigger(Path("a.js"))

        debouncer.cancel()
        debouncer.flush()

        assert calls == []


# =============================================================================
# Event Handler
# =============================================================================


@pytest.mark.evergreen
class TestSourceEventHandler:
    """Only file events for watched patterns reach the debouncer."""

    def make_handler(self, root: Path) -> tuple[SourceEventHandler, list[list[Path]]]:
        calls: list[list[Path]] = []
        handler = SourceEventHandler(PathFilter(root, ["**/*.js"]), Debouncer(0, calls.append))
        return handler, calls

    def test_create_modify_delete(self, tmp_path: Path) -> None:
        handler, calls = self.make_handler(tmp_path)
        path = str(tmp_path / "a.js")

        handler.on_created(FileCreatedEvent(path))
        handler.on_modified(FileModifiedEvent(path))
        handler.on_deleted(FileDeletedEvent(path))

        assert len(calls) == 3

    def test_directory_and_unwatched_ignored(self, tmp_path: Path) -> None:
        handler, calls = self.make_handler(tmp_path)

        handler.on_modified(DirModifiedEvent(str(tmp_path)))
        handler.on_modified(FileModifiedEvent(str(tmp_path / "notes.txt")))

        assert calls == []

    def test_move_counts_once(self, tmp_path: Path) -> None:
        handler, calls = self.make_handler(tmp_path)

        handler.on_moved(FileMovedEvent(str(tmp_path / "a.js~"), str(tmp_path / "a.js")))

        assert calls == [[tmp_path / "a.js"]]


# =============================================================================
# Subscription
# =============================================================================


@pytest.mark.evergreen
class TestWatchSources:
    """watch_sources returns a stoppable handle."""

    def test_handle_stops_observer_once(self, tmp_path: Path) -> None:
        observer = MagicMock()

        handle = watch_sources(tmp_path, ["**/*.js"], lambda paths: None, observer=observer)

        observer.schedule.assert_called_once()
        assert observer.schedule.call_args.kwargs["recursive"] is True
        observer.start.assert_called_once()
        assert handle.active

        handle.stop()
        handle.stop()

        assert not handle.active
        observer.stop.assert_called_once()
        observer.join.assert_called_once()

    def test_context_manager_stops(self, tmp_path: Path) -> None:
        observer = MagicMock()
        with watch_sources(tmp_path, ["**/*.js"], lambda paths: None, observer=observer) as handle:
            assert isinstance(handle, WatchHandle)
        observer.stop.assert_called_once()

    def test_schedule_failure_is_startup_error(self, tmp_path: Path) -> None:
        observer = MagicMock()
        observer.schedule.side_effect = OSError("inotify limit reached")

        with pytest.raises(StageError) as exc_info:
            watch_sources(tmp_path, ["**/*.js"], lambda paths: None, observer=observer)

        assert exc_info.value.kind is ErrorKind.STARTUP

    def test_real_observer_sees_change(self, tmp_path: Path) -> None:
        seen = threading.Event()

        with watch_sources(tmp_path, ["**/*.js"], lambda paths: seen.set(), debounce=0):
            (tmp_path / "new.js").write_text("let x;")
            assert seen.wait(timeout=5)
