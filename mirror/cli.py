"""
Command-line entry point: ``pii-mirror [--catch-up [--reset]] [--init-db]``
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.config import settings
from core.exceptions import SyncException
from core.logging import setup_logging
from mirror.runner import EXIT_FATAL, SyncRunner
import logging

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pii-mirror",
        description="Mirror customers into an anonymized sink"
    )
    parser.add_argument(
        "--catch-up",
        "--full-reindex",
        dest="catch_up",
        action="store_true",
        help="Upsert the full source history into the sink, then exit (default: tail new inserts)"
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="With --catch-up: delete every sink record first"
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create missing tables before running"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL"
    )
    args = parser.parse_args(argv)
    if args.reset and not args.catch_up:
        parser.error("--reset requires --catch-up")
    return args


def install_signal_handlers(runner: SyncRunner):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.coordinator.request, sig.name)
        except NotImplementedError:
            # Windows event loops: fall back to the default KeyboardInterrupt
            logger.debug(f"Signal handler for {sig.name} not supported on this platform")


async def run(args: argparse.Namespace) -> int:
    try:
        runner = SyncRunner.from_settings(settings)
    except SyncException as e:
        logger.error(
            f"Startup failed: {e.message}",
            extra={"error_context": e.to_dict()}
        )
        return EXIT_FATAL
    
    install_signal_handlers(runner)
    
    if args.init_db:
        try:
            await runner.init_db()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Table creation failed: {e}")
            await runner.coordinator.release(runner.checkpoint_store, *runner.engines)
            return EXIT_FATAL
    
    if args.catch_up:
        return await runner.run_catch_up(reset=args.reset)
    return await runner.run_continuous()


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    setup_logging(args.log_level)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
