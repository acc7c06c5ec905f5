"""
Build phases for devpipe.

Individual build operations that the orchestrator wires together.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional, Sequence

from devpipe.build.config import PipelineConfig, TranspilerOptions
from devpipe.build.errors import ErrorKind, StageError, StageResult
from devpipe.core.utils import log, run_cmd


# =============================================================================
# Clean Slate
# =============================================================================


def wipe_build_dir(build_dir: Path) -> int:
    """Remove every entry directly under the build root.

    The root itself is kept (and created if missing). Returns the number
    of entries removed.
    """
    build_dir.mkdir(parents=True, exist_ok=True)

    removed = 0
    for entry in build_dir.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed += 1

    return removed


# =============================================================================
# Script Collection
# =============================================================================


def collect_scripts(root: Path, patterns: Sequence[str]) -> list[Path]:
    """Collect files matching ``patterns``, group by group.

    Every file matched by the first pattern precedes every file matched by
    the second, and so on. Within a group files are sorted by relative
    path. A file already collected by an earlier group is not repeated.
    """
    collected: list[Path] = []
    seen: set[Path] = set()

    for pattern in patterns:
        group = sorted(
            (p for p in root.glob(pattern) if p.is_file()),
            key=lambda p: p.relative_to(root).as_posix(),
        )
        for path in group:
            if path not in seen:
                seen.add(path)
                collected.append(path)

    return collected


def ordered_script_patterns(config: PipelineConfig) -> tuple[str, str]:
    """Minified (third-party) scripts first, application scripts second."""
    return (config.patterns.minified, config.patterns.scripts)


# =============================================================================
# Transpiler
# =============================================================================


class Transpiler:
    """Runs the configured transpiler command once per source file.

    Source text goes in on stdin, transpiled text comes back on stdout.
    """

    def __init__(self, options: TranspilerOptions, source_root: Path):
        self.options = options
        self.source_root = source_root
        self._ignored: Optional[set[Path]] = None

    def refresh(self) -> None:
        """Forget the cached ignore set (call after the source tree changes)."""
        self._ignored = None

    def is_ignored(self, path: Path) -> bool:
        if not self.options.ignore:
            return False
        if self._ignored is None:
            self._ignored = set(self.source_root.glob(self.options.ignore))
        return path in self._ignored

    def passes_through(self, path: Path) -> bool:
        """True when ``path`` is copied byte-for-byte instead of transpiled."""
        return not self.options.command or self.is_ignored(path)

    def transpile(self, path: Path, text: str) -> str:
        """Transpile one file's text.

        Raises:
            StageError: TRANSPILE if the command is missing or exits non-zero.
        """
        if self.passes_through(path):
            return text

        cmd = [arg.replace("{filename}", str(path)) for arg in self.options.command]
        try:
            result = run_cmd(cmd, cwd=self.source_root, input_text=text, check=False)
        except FileNotFoundError as e:
            raise StageError(
                ErrorKind.TRANSPILE,
                f"Transpiler not found: {cmd[0]}",
                path=path,
            ) from e

        if result.returncode != 0:
            raise StageError(
                ErrorKind.TRANSPILE,
                f"Transpiler exited with code {result.returncode}",
                path=path,
                detail=result.stderr or "",
            )
        return result.stdout


# =============================================================================
# Transpile Stage
# =============================================================================


def read_source(path: Path, encoding: str) -> str:
    """Read a file that is about to be transpiled.

    Raises:
        StageError: TRANSPILE if the file is not valid ``encoding`` text.
    """
    try:
        return path.read_text(encoding=encoding)
    except UnicodeDecodeError as e:
        raise StageError(
            ErrorKind.TRANSPILE,
            f"Cannot decode source as {encoding}",
            path=path,
            detail=str(e),
        ) from e


def transpile_browser(config: PipelineConfig, transpiler: Transpiler) -> StageResult:
    """Transpile every script into the build root, mirroring relative paths.

    Pass-through files (minified, or everything when no transpiler is set)
    are copied byte-for-byte. A failing file is reported and skipped; the
    remaining files are still processed.
    """
    result = StageResult("transpile")
    source = config.paths.source
    encoding = config.tool_options.read.encoding
    written: list[Path] = []

    transpiler.refresh()
    for path in collect_scripts(source, [config.patterns.scripts]):
        dest = config.paths.build / path.relative_to(source)

        if transpiler.passes_through(path):
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, dest)
            written.append(dest)
            continue

        try:
            output = transpiler.transpile(path, read_source(path, encoding))
        except StageError as e:
            result.add(e)
            continue

        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(output, encoding=encoding)
        written.append(dest)

    result.value = written
    log.info(f"Transpiled {len(written)} script(s) -> {config.paths.build}")
    return result


def transpile_terminal(config: PipelineConfig, transpiler: Transpiler) -> StageResult:
    """Transpile minified then application scripts and concatenate them.

    The bundle is written to ``build/<fileNames.bundle>``. Pass-through
    files enter the bundle as their raw bytes. Files that fail
    transpilation are left out of the bundle and reported.
    """
    result = StageResult("transpile")
    source = config.paths.source
    encoding = config.tool_options.read.encoding
    parts: list[bytes] = []

    transpiler.refresh()
    scripts = collect_scripts(source, ordered_script_patterns(config))
    for path in scripts:
        if transpiler.passes_through(path):
            parts.append(path.read_bytes())
            continue
        try:
            output = transpiler.transpile(path, read_source(path, encoding))
        except StageError as e:
            result.add(e)
            continue
        parts.append(output.encode(encoding))

    bundle = config.bundle_path
    bundle.parent.mkdir(parents=True, exist_ok=True)
    bundle.write_bytes(b"\n".join(parts))

    result.value = bundle
    log.info(f"Bundled {len(parts)} of {len(scripts)} script(s) -> {bundle.name}")
    return result
