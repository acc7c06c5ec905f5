"""
Shared pytest fixtures for devpipe tests.

Provides a throwaway project tree and configs that never shell out to a
real transpiler or runtime unless a test asks for one.

Test Tier Markers:
  @pytest.mark.evergreen - Tests that always run, never skip (production tests)
  @pytest.mark.dev       - Development/WIP tests, toggle-able
  @pytest.mark.temporary - Tests with explicit discard flag
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from devpipe.build.config import PipelineConfig, build_config
from devpipe.core.utils import log


# =============================================================================
# Test Data Constants
# =============================================================================

INDEX_HTML = """<!doctype html>
<html>
  <head>
    <!-- inject:js -->
    <!-- endinject -->
  </head>
  <body></body>
</html>
"""

# Format: (relative path, content)
SOURCE_FILES: list[tuple[str, str]] = [
    ("a.min.js", "var A = 1;"),
    ("b.min.js", "var B = 2;"),
    ("c.js", "console.log(A + B);"),
]

# Uppercases stdin, so transpiled output is easy to tell apart
UPPERCASE_TRANSPILER = [
    sys.executable,
    "-c",
    "import sys; sys.stdout.write(sys.stdin.read().upper())",
]

# Fails for any file whose name contains "bad"
FAILING_TRANSPILER = [
    sys.executable,
    "-c",
    "import os, sys; name = os.path.basename(sys.argv[1]); "
    "sys.stderr.write('SyntaxError in ' + name) if 'bad' in name else sys.stdout.write(sys.stdin.read()); "
    "sys.exit(1 if 'bad' in name else 0)",
    "{filename}",
]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def plain_log() -> None:
    """Keep ANSI codes out of captured output."""
    log.set_color(False)


@pytest.fixture
def project_tree(tmp_path: Path) -> Path:
    """A project with source/{a.min.js,b.min.js,c.js,index.html}."""
    source = tmp_path / "source"
    source.mkdir()
    for rel, content in SOURCE_FILES:
        (source / rel).write_text(content)
    (source / "index.html").write_text(INDEX_HTML)
    return tmp_path


def make_config(project: Path, **tool_overrides) -> PipelineConfig:
    """Config for ``project`` with identity transpilation and fast polling."""
    tools = {
        "transpiler": {"command": []},
        "wait": {"delay": 0, "interval": 5, "timeout": 500, "window": 0},
        "watch": {"debounce": 0},
        "server": {"port": 0, "livereload": False},
    }
    for section, values in tool_overrides.items():
        tools.setdefault(section, {}).update(values)
    return build_config(project, {"toolOptions": tools})


@pytest.fixture
def identity_config(project_tree: Path) -> PipelineConfig:
    return make_config(project_tree)


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test tiers."""
    config.addinivalue_line(
        "markers",
        "evergreen: tests that always run, never skip (production tests)"
    )
    config.addinivalue_line(
        "markers",
        "dev: development/WIP tests, toggle-able for active development"
    )
    config.addinivalue_line(
        "markers",
        "temporary: tests with explicit discard flag"
    )
