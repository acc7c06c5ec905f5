"""
Tests for script tag injection into the entry document.
"""

from __future__ import annotations

import re
from pathlib import Path

import pytest

from conftest import make_config
from devpipe.build.config import build_config
from devpipe.build.inject import inject_scripts, run_inject, script_reference

START = "<!-- inject:js -->"
END = "<!-- endinject -->"


def script_srcs(html: str) -> list[str]:
    return re.findall(r'<script src="([^"]+)"></script>', html)


# =============================================================================
# Text Rewriting
# =============================================================================


@pytest.mark.evergreen
class TestInjectScripts:
    """inject_scripts fills marker blocks in order."""

    def test_fills_markers_with_indentation(self) -> None:
        html = f"<head>\n    {START}\n    {END}\n</head>"

        out, filled = inject_scripts(html, ["a.js", "b.js"], START, END)

        assert filled == 1
        assert out == (
            "<head>\n"
            f"    {START}\n"
            '    <script src="a.js"></script>\n'
            '    <script src="b.js"></script>\n'
            f"    {END}\n"
            "</head>"
        )

    def test_replaces_stale_tags(self) -> None:
        html = f'{START}\n<script src="old.js"></script>\n{END}'
        out, _ = inject_scripts(html, ["new.js"], START, END)
        assert script_srcs(out) == ["new.js"]

    def test_no_markers(self) -> None:
        out, filled = inject_scripts("<html></html>", ["a.js"], START, END)
        assert filled == 0
        assert out == "<html></html>"

    def test_empty_script_list(self) -> None:
        out, filled = inject_scripts(f"{START}{END}", [], START, END)
        assert filled == 1
        assert out == f"{START}\n{END}"


@pytest.mark.evergreen
class TestScriptReference:
    """References are relative to the document unless configured otherwise."""

    def test_relative_to_document(self, tmp_path: Path) -> None:
        doc = tmp_path / "index.html"
        assert script_reference(tmp_path / "lib" / "x.js", doc, tmp_path, True) == "lib/x.js"

    def test_relative_from_nested_document(self, tmp_path: Path) -> None:
        doc = tmp_path / "pages" / "index.html"
        assert script_reference(tmp_path / "x.js", doc, tmp_path, True) == "../x.js"

    def test_root_absolute(self, tmp_path: Path) -> None:
        doc = tmp_path / "index.html"
        assert script_reference(tmp_path / "lib" / "x.js", doc, tmp_path, False) == "/lib/x.js"


# =============================================================================
# Inject Stage
# =============================================================================


@pytest.mark.evergreen
class TestRunInject:
    """run_inject writes the rewritten document into the build root."""

    def test_minified_scripts_listed_first(self, project_tree: Path) -> None:
        config = make_config(project_tree)

        result = run_inject(config)

        assert result.ok
        html = config.html_output.read_text()
        assert script_srcs(html) == ["a.min.js", "b.min.js", "c.js"]
        # Source document is not modified
        assert "<script" not in config.html_source.read_text()

    def test_nested_scripts_are_relative(self, project_tree: Path) -> None:
        (project_tree / "source" / "vendor").mkdir()
        (project_tree / "source" / "vendor" / "z.min.js").write_text("")
        config = make_config(project_tree)

        run_inject(config)

        srcs = script_srcs(config.html_output.read_text())
        assert srcs == ["a.min.js", "b.min.js", "vendor/z.min.js", "c.js"]

    def test_notify_called_after_write(self, project_tree: Path) -> None:
        config = make_config(project_tree)
        seen: list[bool] = []

        run_inject(config, notify=lambda: seen.append(config.html_output.exists()))

        assert seen == [True]

    def test_missing_document_writes_nothing(self, project_tree: Path) -> None:
        (project_tree / "source" / "index.html").unlink()
        config = make_config(project_tree)
        notified: list[int] = []

        result = run_inject(config, notify=lambda: notified.append(1))

        assert result.ok
        assert not config.html_output.exists()
        assert notified == []

    def test_glob_document_pattern(self, project_tree: Path) -> None:
        source = project_tree / "source"
        (source / "pages").mkdir()
        (source / "index.html").rename(source / "pages" / "index.html")
        config = build_config(project_tree, {
            "patterns": {"html": "**/index.html"},
            "toolOptions": {"transpiler": {"command": []}},
        })

        result = run_inject(config)

        assert result.ok
        assert result.value == config.paths.build / "pages" / "index.html"
        srcs = script_srcs(result.value.read_text())
        assert srcs == ["../a.min.js", "../b.min.js", "../c.js"]
