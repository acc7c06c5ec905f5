"""
Pipeline orchestrator for devpipe.

Builds the stage graph for the selected mode, runs it, and owns the
long-lived server and watch subscription.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

from devpipe.build.config import Mode, PipelineConfig
from devpipe.build.errors import ErrorPolicy, StageError, StageResult
from devpipe.build.graph import Stage, TaskGraph
from devpipe.build.inject import run_inject
from devpipe.build.phases import Transpiler, transpile_browser, transpile_terminal
from devpipe.build.runner import run_bundle
from devpipe.commands.serve import DevServer
from devpipe.commands.watch import WatchHandle, watch_sources
from devpipe.core.timing import timing_summary
from devpipe.core.utils import log


class PipelineOrchestrator:
    """Wires the transpile/inject/serve/run/watch stages for one mode.

    The mode is fixed at construction. ``server`` and ``watch_factory``
    can be replaced for tests.
    """

    def __init__(
        self,
        config: PipelineConfig,
        mode: Mode,
        policy: Optional[ErrorPolicy] = None,
        server: Optional[DevServer] = None,
        watch_factory: Callable[..., WatchHandle] = watch_sources,
        watch: bool = True,
    ):
        self.config = config
        self.mode = mode
        self.policy = policy or ErrorPolicy()
        self.transpiler = Transpiler(config.tool_options.transpiler, config.paths.source)
        self.server = server
        self.watch_factory = watch_factory
        self.watch_handle: Optional[WatchHandle] = None

        self._rebuild_lock = threading.Lock()
        self._rebuild_count = 0

        self.graph = TaskGraph()
        self.default = self.graph.add(self._build_graph(watch))

    @property
    def rebuild_count(self) -> int:
        return self._rebuild_count

    # -------------------------------------------------------------------------
    # Graph construction
    # -------------------------------------------------------------------------

    def _build_graph(self, watch: bool) -> Stage:
        if self.mode is Mode.BROWSER:
            if self.server is None:
                self.server = DevServer(self.config.tool_options.server)
            transpile = Stage("transpile", self.transpile)
            inject = Stage("inject", self.inject, depends_on=(transpile,))
            serve = Stage("serve", self.serve, depends_on=(inject,))
            primary = serve
            watch_dep = inject
        else:
            transpile = Stage("transpile", self.transpile)
            primary = transpile
            watch_dep = transpile

        if not watch:
            # Without a watcher the bundle still runs once
            if self.mode is Mode.TERMINAL:
                run = Stage("run", self.run_bundle, depends_on=(transpile,))
                return Stage("default", depends_on=(primary, run))
            return Stage("default", depends_on=(primary,))

        watch_stage = Stage("watch", self.start_watch, depends_on=(watch_dep,))
        return Stage("default", depends_on=(primary, watch_stage))

    # -------------------------------------------------------------------------
    # Stage bodies
    # -------------------------------------------------------------------------

    def transpile(self) -> StageResult:
        if self.mode is Mode.BROWSER:
            return transpile_browser(self.config, self.transpiler)
        return transpile_terminal(self.config, self.transpiler)

    def inject(self) -> StageResult:
        notify = self.server.notify_reload if self.server is not None else None
        return run_inject(self.config, notify=notify)

    def serve(self) -> StageResult:
        result = StageResult("serve")
        try:
            self.server.start()
        except StageError as e:
            result.add(e)
        return result

    def run_bundle(self) -> StageResult:
        return run_bundle(self.config)

    def start_watch(self) -> StageResult:
        result = StageResult("watch")
        source = self.config.paths.source
        patterns = [self.config.patterns.scripts]
        if self.mode is Mode.BROWSER:
            patterns.append(self.config.patterns.html)

        try:
            self.watch_handle = self.watch_factory(
                source,
                patterns,
                self.on_change,
                debounce=self.config.tool_options.watch.debounce,
            )
        except StageError as e:
            result.add(e)
            return result

        result.value = self.watch_handle
        if self.mode is Mode.TERMINAL:
            # Run the current bundle once; changes that arrive meanwhile wait
            with self._rebuild_lock:
                self.policy.handle(self.run_bundle())
        return result

    # -------------------------------------------------------------------------
    # Watch callback
    # -------------------------------------------------------------------------

    def on_change(self, paths: list[Path]) -> None:
        """Rebuild after a batch of source changes.

        Browser: transpile, then inject (which triggers live reload).
        Terminal: transpile the bundle, then run it once.
        """
        with self._rebuild_lock:
            self._rebuild_count += 1
            names = ", ".join(sorted({p.name for p in paths}))
            log.info(f"[{self._rebuild_count}] Rebuilding after change: {names}")
            try:
                for step in self._rebuild_steps():
                    self.policy.handle(step())
            except Exception as e:
                # A broken rebuild must not take the watcher down
                log.error(f"[{self._rebuild_count}] Rebuild failed: {e}")

    def _rebuild_steps(self) -> list[Callable[[], StageResult]]:
        if self.mode is Mode.BROWSER:
            return [self.transpile, self.inject]
        return [self.transpile, self.run_bundle]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def run(self) -> list[StageResult]:
        """Run the default stage and everything it depends on."""
        log.header(f"devpipe ({self.mode.value} mode)")
        return self.graph.run(self.default, self.policy)

    def timing_report(self) -> str:
        return timing_summary(self.graph.timings)

    def stop(self) -> None:
        if self.watch_handle is not None:
            self.watch_handle.stop()
        if self.server is not None:
            self.server.stop()
