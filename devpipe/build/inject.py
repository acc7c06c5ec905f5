"""
Script tag injection.

Rewrites an HTML document so the block between the inject markers lists
one <script> tag per script, in the given order.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Callable, Optional, Sequence

from devpipe.build.config import PipelineConfig
from devpipe.build.errors import StageResult
from devpipe.build.phases import collect_scripts, ordered_script_patterns
from devpipe.core.utils import log

SCRIPT_TAG = '<script src="{src}"></script>'


def script_reference(script: Path, document: Path, root: Path, relative: bool) -> str:
    """Path used in the src attribute for ``script``.

    Relative references are relative to the document's directory;
    otherwise they are root-absolute (``/js/app.js``).
    """
    if relative:
        return Path(os.path.relpath(script, document.parent)).as_posix()
    return "/" + script.relative_to(root).as_posix()


def inject_scripts(
    html: str,
    references: Sequence[str],
    start_tag: str,
    end_tag: str,
) -> tuple[str, int]:
    """Fill every start/end marker pair with script tags.

    Tags are placed one per line, indented like the start marker. Returns
    the new text and the number of marker pairs filled.
    """
    pattern = re.compile(
        r"(?P<indent>[ \t]*)(?P<start>" + re.escape(start_tag) + r")"
        r"(?P<body>.*?)"
        r"(?P<end>" + re.escape(end_tag) + r")",
        re.DOTALL,
    )

    def fill(match: re.Match) -> str:
        indent = match.group("indent")
        lines = [f"{indent}{match.group('start')}"]
        lines.extend(f"{indent}{SCRIPT_TAG.format(src=ref)}" for ref in references)
        lines.append(f"{indent}{match.group('end')}")
        return "\n".join(lines)

    return pattern.subn(fill, html)


def run_inject(
    config: PipelineConfig,
    notify: Optional[Callable[[], None]] = None,
) -> StageResult:
    """Rewrite the entry document into the build root.

    Scripts are located in the source tree, minified first. ``notify`` is
    called after the document is written (live reload hook).
    """
    result = StageResult("inject")
    source = config.paths.source
    options = config.tool_options.inject
    encoding = config.tool_options.read.encoding
    document = config.html_source

    if not document.exists():
        log.warning(f"Entry document not found: {document}")
        return result

    scripts = collect_scripts(source, ordered_script_patterns(config))
    references = [
        script_reference(path, document, source, options.relative) for path in scripts
    ]

    html, filled = inject_scripts(
        document.read_text(encoding=encoding),
        references,
        options.start_tag,
        options.end_tag,
    )
    if filled == 0:
        log.warning(f"No inject markers in {document.name}; written unchanged")

    output = config.html_output
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(html, encoding=encoding)
    log.info(f"Injected {len(references)} script tag(s) into {output.name}")

    result.value = output
    if notify is not None:
        notify()
    return result
