"""Command-line entry point; the only place that decides the exit status."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .config import LOG_FILE, Settings
from .errors import ConfigError
from .logs import setup_logging
from .pipeline import EXIT_CONFIG, EXIT_FAILED, RunOptions, run_pipeline

logger = logging.getLogger("dmsreport.cli")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Export today's 06:00-18:00 DMS status report and email it.")
    p.add_argument("--headful", action="store_true", help="Run browser headful for debugging.")
    p.add_argument("--skip-email", action="store_true", help="Export and convert only; keep files, send nothing.")
    p.add_argument("--skip-chat", action="store_true", help="Skip the Google Chat run notice.")
    p.add_argument("--timeout", type=int, help="Browser operation timeout in seconds (default 60 or DMS_TIMEOUT).")
    p.add_argument("--truck", help="Truck scope: ALL (default) or a specific truck id.")
    p.add_argument(
        "--report-type",
        action="append",
        dest="report_types",
        metavar="KEYWORD",
        help="Report-type keyword to tick (repeatable; overrides DMS_REPORT_TYPES).",
    )
    p.add_argument("--scratch-dir", type=Path, help="Download directory (default ./downloads).")
    p.add_argument("--log-file", type=Path, default=LOG_FILE, help=f"Log file (default {LOG_FILE}).")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return p.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_file, logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = Settings.from_env(environ).with_overrides(
            timeout_s=args.timeout,
            truck_scope=args.truck,
            report_types=tuple(args.report_types or ()),
            scratch_dir=args.scratch_dir,
        )
    except ConfigError as e:
        logger.error(f"❌ {e}")
        return EXIT_CONFIG

    options = RunOptions(headless=not args.headful, skip_email=args.skip_email, skip_chat=args.skip_chat)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    task = loop.create_task(run_pipeline(settings, options))

    def _handle_sig(*_):
        logger.warning("Signal received; cancelling the run.")
        task.cancel()

    for s in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(s, _handle_sig)
        except (NotImplementedError, RuntimeError, ValueError):
            pass

    try:
        result = loop.run_until_complete(task)
    except asyncio.CancelledError:
        logger.error("❌ Run cancelled.")
        return EXIT_FAILED
    finally:
        loop.close()
        asyncio.set_event_loop(None)
    return result.exit_code


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
