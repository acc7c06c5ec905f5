"""
Stage graph for devpipe.

Stages name their prerequisites directly; the graph runs a target stage
after everything it transitively depends on, each stage exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from devpipe.build.errors import ErrorPolicy, StageResult
from devpipe.core.timing import TimingContext


@dataclass(eq=False)
class Stage:
    """A named unit of work. ``run`` is None for aggregate stages."""

    name: str
    run: Optional[Callable[[], StageResult]] = None
    depends_on: tuple["Stage", ...] = field(default_factory=tuple)

    def __repr__(self) -> str:
        deps = ", ".join(d.name for d in self.depends_on)
        return f"Stage({self.name!r}, depends_on=[{deps}])"


class TaskGraph:
    """Directed acyclic graph of stages with topological execution."""

    def __init__(self) -> None:
        self._stages: dict[str, Stage] = {}
        self.timings: dict[str, float] = {}

    def add(self, stage: Stage) -> Stage:
        """Register a stage (and, transitively, its dependencies)."""
        existing = self._stages.get(stage.name)
        if existing is not None and existing is not stage:
            raise ValueError(f"Duplicate stage name: {stage.name}")
        self._stages[stage.name] = stage
        for dep in stage.depends_on:
            self.add(dep)
        return stage

    def order(self, target: Stage) -> list[Stage]:
        """Stages needed for ``target``, dependencies first.

        Raises:
            ValueError: If the dependencies contain a cycle.
        """
        ordered: list[Stage] = []
        done: set[int] = set()
        visiting: set[int] = set()

        def visit(stage: Stage, trail: list[str]) -> None:
            if id(stage) in done:
                return
            if id(stage) in visiting:
                cycle = " -> ".join(trail + [stage.name])
                raise ValueError(f"Dependency cycle: {cycle}")
            visiting.add(id(stage))
            for dep in stage.depends_on:
                visit(dep, trail + [stage.name])
            visiting.discard(id(stage))
            done.add(id(stage))
            ordered.append(stage)

        visit(target, [])
        return ordered

    def run(self, target: Stage, policy: Optional[ErrorPolicy] = None) -> list[StageResult]:
        """Run ``target`` and its prerequisites in order.

        Each result goes through ``policy``; a fatal error raises
        PipelineAbort and stops the run.
        """
        policy = policy or ErrorPolicy()
        results: list[StageResult] = []

        for stage in self.order(target):
            if stage.run is None:
                results.append(StageResult(stage.name))
                continue
            with TimingContext(self.timings, stage.name):
                result = stage.run()
            results.append(policy.handle(result))

        return results
