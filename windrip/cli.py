from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .logging_config import configure_logging
from .models import BuildConfig, RunStatus, WindripError
from .settings import load_config


logger = logging.getLogger(__name__)

EXAMPLES = """\
examples:
  windrip src
  windrip src --output dist --merged --watch --minify
  windrip src --server-command "php -S localhost:7890" --file-extensions html,php,jsx
  windrip src --watch --verbose --timeout 60000
"""


def confirm(question: str, default: bool = False) -> bool:
    """Ask a yes/no question on the terminal.

    When stdin is not a TTY nothing is asked: a warning is logged and
    ``default`` is returned.
    """
    if not sys.stdin or not sys.stdin.isatty():
        logger.warning("Cannot prompt (%s) because stdin is non-interactive; using %s", question, "yes" if default else "no")
        return default
    suffix = " [Y/n] " if default else " [y/N] "
    answer = input(question + suffix).strip().lower()
    if not answer:
        return default
    return answer in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="windrip",
        description="Extract the Tailwind CSS and JS your templates use into static build files.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("input", nargs="?", help="input directory containing frontend files (default: src)")
    parser.add_argument("--output", help="output directory for build files (default: windrip)")
    parser.add_argument("--watch", action="store_true", help="rebuild whenever a source file changes")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--separate", dest="separate_builds", action="store_const", const=True, help="one CSS/JS pair per source file")
    mode.add_argument("--merged", dest="separate_builds", action="store_const", const=False, help="a single CSS/JS pair for all files")
    parser.add_argument("--no-backup", dest="backup_originals", action="store_const", const=False, help="do not snapshot files before rewriting them")
    parser.add_argument("--server-command", help='command serving the input directory (e.g. "php -S localhost:7890")')
    parser.add_argument("--file-extensions", help="comma-separated extensions (default: html,php,twig,jsx,vue,svelte)")
    parser.add_argument("--minify", action="store_const", const=True, help="minify the CSS output")
    parser.add_argument("--timeout", dest="timeout_ms", type=int, help="browser timeout in milliseconds (default: 30000)")
    parser.add_argument("--retries", type=int, help="render attempts per page, 1-10 (default: 3)")
    parser.add_argument("--port", type=int, help="content server port (default: 7890)")
    parser.add_argument("--verbose", action="store_const", const=True, help="debug logging")
    parser.add_argument("--dry-run", action="store_const", const=True, help="report what would be built without writing anything")
    parser.add_argument("--include-external", action="store_const", const=True, help="inline same-origin external stylesheets")
    parser.add_argument("--unlink-external", action="store_const", const=True, help="remove external stylesheet links from rewritten files")
    parser.add_argument("--interactive", action="store_true", help="ask before unlinking external stylesheets")
    parser.add_argument("--config", type=Path, help="JSON config file (default: windrip.config.json)")
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "input_dir": args.input,
        "output_dir": args.output,
        "separate_builds": args.separate_builds,
        "backup_originals": args.backup_originals,
        "server_command": args.server_command,
        "minify": args.minify,
        "timeout_ms": args.timeout_ms,
        "retries": args.retries,
        "port": args.port,
        "verbose": args.verbose,
        "dry_run": args.dry_run,
        "include_external": args.include_external,
        "unlink_external": args.unlink_external,
    }
    if args.file_extensions:
        overrides["file_extensions"] = [ext.strip() for ext in args.file_extensions.split(",")]
    return overrides


def _warn_dynamic_sources(config: BuildConfig) -> None:
    if config.has_dynamic_sources() and not config.server_command:
        logger.warning(
            "Dynamic file types (php, twig) are configured; serving them with 'php -S localhost:%d'. "
            "Use --server-command to run a different server.",
            config.port,
        )


async def _watch(config: BuildConfig) -> None:
    from .watcher import WatchOrchestrator

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("evt=signal_handler_unavailable signal=%s", sig)
    await WatchOrchestrator(config).run(stop_event)


async def _build(config: BuildConfig) -> int:
    from .pipeline import run_build

    report = await run_build(config)
    if report.status is RunStatus.dry_run:
        logger.info("Dry run: %d file(s) would be processed, %d unchanged", len(report.processed), len(report.skipped))
    elif report.errors:
        logger.error("Build completed with %d error(s)", len(report.errors))
        return 1
    else:
        logger.info("Build complete: %d processed, %d unchanged", len(report.processed), len(report.skipped))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else None)

    try:
        config = load_config(overrides_from_args(args), config_path=args.config)
    except WindripError as exc:
        logger.error("%s", exc)
        return 1

    if args.interactive and not config.unlink_external:
        if confirm("Unlink external CSS files and include them in the build?", default=False):
            config = config.model_copy(update={"unlink_external": True, "include_external": True})

    _warn_dynamic_sources(config)
    try:
        if args.watch:
            asyncio.run(_watch(config))
            return 0
        return asyncio.run(_build(config))
    except WindripError as exc:
        logger.error("Error: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except Exception as exc:  # noqa: BLE001
        logger.error("Error: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
