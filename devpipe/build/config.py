"""
Pipeline configuration for devpipe.

Constants, dataclasses, mode selection and config loading.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence

from devpipe.build.errors import ErrorKind, StageError
from devpipe.core.utils import CONFIG_FILE_NAME, SOURCE_DIR_NAME, BUILD_DIR_NAME

__all__ = [
    "DEFAULT_TRANSPILER_COMMAND",
    "DEFAULT_RUNNER_COMMAND",
    "ConfigError",
    "Mode",
    "select_mode",
    "Paths",
    "FileNames",
    "Patterns",
    "TranspilerOptions",
    "InjectOptions",
    "ReadOptions",
    "WaitOptions",
    "ServerOptions",
    "RunnerOptions",
    "WatchOptions",
    "ToolOptions",
    "PipelineConfig",
    "build_config",
    "load_config",
]

# {filename} is replaced by the path of the file being transpiled
DEFAULT_TRANSPILER_COMMAND = ("npx", "babel", "--filename", "{filename}")

DEFAULT_RUNNER_COMMAND = ("node",)


class ConfigError(StageError):
    """Raised for unreadable or invalid configuration files."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(ErrorKind.CONFIG, message, path=path)


# =============================================================================
# Mode Selection
# =============================================================================


class Mode(Enum):
    """Which task chain the pipeline runs."""
    BROWSER = "browser"
    TERMINAL = "terminal"


def select_mode(argv: Sequence[str]) -> Mode:
    """Classify the run from the final command-line argument.

    The first two characters (conventionally ``--``) are stripped. Anything
    other than ``browser``, including a missing argument, is terminal mode.
    """
    if not argv:
        return Mode.TERMINAL
    if argv[-1][2:] == "browser":
        return Mode.BROWSER
    return Mode.TERMINAL


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Paths:
    source: Path
    build: Path


@dataclass(frozen=True)
class FileNames:
    bundle: str = "bundle.js"


@dataclass(frozen=True)
class Patterns:
    """Glob patterns, relative to the source root.

    ``html`` names the entry document: a relative path, or a glob whose
    first match is used.
    """

    html: str = "index.html"
    scripts: str = "**/*.js"
    minified: str = "**/*.min.js"


@dataclass(frozen=True)
class TranspilerOptions:
    """Transpiler invocation.

    An empty command means identity transpilation. Files matching
    ``ignore`` are passed through untouched.
    """

    command: tuple[str, ...] = DEFAULT_TRANSPILER_COMMAND
    ignore: Optional[str] = "**/*.min.js"


@dataclass(frozen=True)
class InjectOptions:
    relative: bool = True
    start_tag: str = "<!-- inject:js -->"
    end_tag: str = "<!-- endinject -->"


@dataclass(frozen=True)
class ReadOptions:
    encoding: str = "utf-8"


@dataclass(frozen=True)
class WaitOptions:
    """Bundle availability polling, all values in milliseconds."""

    delay: int = 0
    interval: int = 250
    timeout: int = 30000
    window: int = 750


@dataclass(frozen=True)
class ServerOptions:
    root: Path
    port: int = 8080
    livereload: bool = True
    host: str = "localhost"

    @property
    def ws_port(self) -> int:
        return self.port + 1


@dataclass(frozen=True)
class RunnerOptions:
    command: tuple[str, ...] = DEFAULT_RUNNER_COMMAND


@dataclass(frozen=True)
class WatchOptions:
    debounce: float = 0.1  # seconds; <= 0 dispatches synchronously


@dataclass(frozen=True)
class ToolOptions:
    server: ServerOptions
    transpiler: TranspilerOptions = field(default_factory=TranspilerOptions)
    inject: InjectOptions = field(default_factory=InjectOptions)
    read: ReadOptions = field(default_factory=ReadOptions)
    wait: WaitOptions = field(default_factory=WaitOptions)
    runner: RunnerOptions = field(default_factory=RunnerOptions)
    watch: WatchOptions = field(default_factory=WatchOptions)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable configuration shared read-only by every stage."""

    paths: Paths
    file_names: FileNames
    patterns: Patterns
    tool_options: ToolOptions

    @property
    def bundle_path(self) -> Path:
        return self.paths.build / self.file_names.bundle

    @property
    def html_source(self) -> Path:
        """Entry document in the source tree.

        A wildcard pattern resolves to its first match by relative path.
        With no match the pattern is joined literally, so callers see a
        missing document.
        """
        source = self.paths.source
        pattern = self.patterns.html
        if any(ch in pattern for ch in "*?["):
            matches = sorted(
                (p for p in source.glob(pattern) if p.is_file()),
                key=lambda p: p.relative_to(source).as_posix(),
            )
            if matches:
                return matches[0]
        return source / pattern

    @property
    def html_output(self) -> Path:
        return self.paths.build / self.html_source.relative_to(self.paths.source)

    def replace_tool(self, **changes: Any) -> "PipelineConfig":
        """Return a copy with some tool option sections swapped out.

        ``server.root`` is re-derived, so it keeps tracking ``paths.build``.
        """
        tools = dataclasses.replace(self.tool_options, **changes)
        tools = dataclasses.replace(
            tools, server=dataclasses.replace(tools.server, root=self.paths.build)
        )
        return dataclasses.replace(self, tool_options=tools)


# =============================================================================
# Construction
# =============================================================================


def build_config(
    project_dir: Path,
    overrides: Optional[dict[str, Any]] = None,
) -> PipelineConfig:
    """Build a PipelineConfig from defaults plus optional overrides.

    ``overrides`` has the same shape as devpipe.json.
    """
    overrides = dict(overrides or {})
    project_dir = Path(project_dir).resolve()

    _reject_unknown(overrides, {"paths", "fileNames", "patterns", "toolOptions"}, "")

    path_values = _section(overrides, "paths", {"source", "build"})
    paths = Paths(
        source=(project_dir / path_values.get("source", SOURCE_DIR_NAME)).resolve(),
        build=(project_dir / path_values.get("build", BUILD_DIR_NAME)).resolve(),
    )

    file_names = FileNames(**_section(overrides, "fileNames", _field_names(FileNames)))
    patterns = Patterns(**_section(overrides, "patterns", _field_names(Patterns)))

    tools = overrides.get("toolOptions", {})
    if not isinstance(tools, dict):
        raise ConfigError("'toolOptions' must be an object")
    _reject_unknown(
        tools,
        {"transpiler", "inject", "read", "wait", "server", "runner", "watch"},
        "toolOptions.",
    )

    transpiler_values = _section(tools, "transpiler", _field_names(TranspilerOptions), "toolOptions.")
    if "command" in transpiler_values:
        transpiler_values["command"] = _as_command(transpiler_values["command"], "transpiler")
    transpiler_values.setdefault("ignore", patterns.minified)

    runner_values = _section(tools, "runner", _field_names(RunnerOptions), "toolOptions.")
    if "command" in runner_values:
        runner_values["command"] = _as_command(runner_values["command"], "runner")

    server_values = _section(tools, "server", _field_names(ServerOptions), "toolOptions.")
    # server.root always mirrors paths.build, so it is derived last
    server_values.pop("root", None)

    try:
        tool_options = ToolOptions(
            server=ServerOptions(root=paths.build, **server_values),
            transpiler=TranspilerOptions(**transpiler_values),
            inject=InjectOptions(**_section(tools, "inject", _field_names(InjectOptions), "toolOptions.")),
            read=ReadOptions(**_section(tools, "read", _field_names(ReadOptions), "toolOptions.")),
            wait=WaitOptions(**_section(tools, "wait", _field_names(WaitOptions), "toolOptions.")),
            runner=RunnerOptions(**runner_values),
            watch=WatchOptions(**_section(tools, "watch", _field_names(WatchOptions), "toolOptions.")),
        )
    except TypeError as e:
        raise ConfigError(f"Invalid tool options: {e}") from e

    return PipelineConfig(
        paths=paths,
        file_names=file_names,
        patterns=patterns,
        tool_options=tool_options,
    )


def load_config(project_dir: Path, config_path: Optional[Path] = None) -> PipelineConfig:
    """Load configuration for a project.

    Reads ``config_path`` if given, else devpipe.json in the project
    directory when present, else uses defaults.

    Raises:
        ConfigError: If the file is missing (explicit path only), is not
            valid JSON, or contains unknown keys.
    """
    project_dir = Path(project_dir).resolve()

    if config_path is None:
        candidate = project_dir / CONFIG_FILE_NAME
        config_path = candidate if candidate.exists() else None
    elif not Path(config_path).exists():
        raise ConfigError(f"Config file not found: {config_path}")

    overrides: dict[str, Any] = {}
    if config_path is not None:
        try:
            overrides = json.loads(Path(config_path).read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"{config_path} is not valid JSON: {e}") from e
        if not isinstance(overrides, dict):
            raise ConfigError(f"{config_path} must contain a JSON object")

    return build_config(project_dir, overrides)


# =============================================================================
# Helpers
# =============================================================================


def _field_names(cls: type) -> set[str]:
    return {f.name for f in dataclasses.fields(cls)}


def _reject_unknown(data: dict[str, Any], allowed: set[str], prefix: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigError(f"Unknown config key(s): {', '.join(prefix + k for k in unknown)}")


def _section(
    data: dict[str, Any],
    name: str,
    allowed: set[str],
    prefix: str = "",
) -> dict[str, Any]:
    values = data.get(name, {})
    if not isinstance(values, dict):
        raise ConfigError(f"'{prefix}{name}' must be an object")
    _reject_unknown(values, allowed, f"{prefix}{name}.")
    return dict(values)


def _as_command(value: Any, label: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(value.split())
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ConfigError(f"{label} command must be a string or a list of strings")
