"""
Main CLI for devpipe.

Transpiles the source tree, then either serves it to a browser with live
reload (``--browser``) or bundles and runs it in a terminal runtime, and
keeps doing so as files change.
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Optional

from devpipe import __version__
from devpipe.build.config import ConfigError, Mode, load_config, select_mode
from devpipe.build.errors import PipelineAbort
from devpipe.build.orchestrator import PipelineOrchestrator
from devpipe.build.phases import wipe_build_dir
from devpipe.core.utils import log


# =============================================================================
# Argument Parsing
# =============================================================================


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="devpipe",
        description="Transpile, bundle, serve and watch a script project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
The mode flag is read from the LAST argument only:
  devpipe                        # Terminal mode: bundle and run with node
  devpipe --browser              # Browser mode: inject, serve, live reload
  devpipe path/to/app --browser  # Browser mode for another project
  devpipe --once                 # Build (and run) once, no watching
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "project_dir",
        nargs="?",
        default=".",
        help="Project directory (default: current directory)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a devpipe.json config (default: <project_dir>/devpipe.json if present)",
    )

    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show stage timings and tracebacks",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the pipeline once without watching",
    )

    # Accepted so argparse does not reject them; select_mode() decides
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--browser", action="store_true", help="Browser mode")
    mode_group.add_argument("--terminal", action="store_true", help="Terminal mode (default)")

    return parser


# =============================================================================
# Entry Point
# =============================================================================


def _idle(orchestrator: PipelineOrchestrator) -> None:
    """Block until Ctrl+C, then shut everything down."""
    log.info("")
    log.info("Watching for changes... (Ctrl+C to stop)")
    if orchestrator.mode is Mode.BROWSER and orchestrator.server is not None:
        log.info(f"  Site: {orchestrator.server.url}")
    log.info("")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        log.info("")
        log.header("Shutting down")
        orchestrator.stop()
        log.info(f"Rebuilds performed: {orchestrator.rebuild_count}")
        log.success("devpipe stopped")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    if argv is None:
        argv = sys.argv[1:]

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.no_color:
        log.set_color(False)

    mode = select_mode(argv)

    try:
        config = load_config(Path(args.project_dir), args.config)
    except ConfigError as e:
        log.error(str(e))
        return 1

    # Clean slate before any stage is registered
    removed = wipe_build_dir(config.paths.build)
    if args.verbose:
        log.dim(f"Wiped {removed} entr{'y' if removed == 1 else 'ies'} from {config.paths.build}")

    orchestrator: Optional[PipelineOrchestrator] = None
    try:
        orchestrator = PipelineOrchestrator(config, mode, watch=not args.once)
        results = orchestrator.run()

        if args.verbose:
            log.dim(orchestrator.timing_report())

        if args.once:
            orchestrator.stop()
            return 0 if all(r.ok for r in results) else 1

        _idle(orchestrator)
        return 0

    except PipelineAbort as e:
        if orchestrator is not None:
            orchestrator.stop()
        log.error(f"Aborted: {e}")
        return 1
    except KeyboardInterrupt:
        if orchestrator is not None:
            orchestrator.stop()
        log.warning("Interrupted")
        return 130
    except Exception as e:
        if orchestrator is not None:
            orchestrator.stop()
        log.error(str(e))
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
