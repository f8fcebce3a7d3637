"""Command-line entry point for engine maintenance and the overdue sweeper.

Usage:
    python -m covenant.cli init-db
    python -m covenant.cli recalc PROPERTY_ID
    python -m covenant.cli sweep
    python -m covenant.cli run-sweeper [--interval SECONDS]

Exit Codes:
    0 - Success
    1 - Failure
"""

import argparse
import asyncio
import logging
import signal
import sys

from dotenv import load_dotenv

from covenant.engine import ComplianceEngine
from covenant.services import create_all_tables, create_engine_from_settings
from covenant.services.config import get_settings
from covenant.services.errors import CovenantError
from covenant.services.logging import setup_server_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Covenant compliance engine")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create all tables")

    recalc = commands.add_parser("recalc", help="Recompute scores for one property")
    recalc.add_argument("property_id", type=int)

    commands.add_parser("sweep", help="Run one overdue sweep")

    run_sweeper = commands.add_parser("run-sweeper", help="Run the overdue sweep periodically")
    run_sweeper.add_argument(
        "--interval", type=float, default=None, help="Seconds between sweeps (default: settings)"
    )
    return parser


async def run_sweeper(engine: ComplianceEngine, interval: float | None) -> None:
    """Run the periodic sweep until SIGINT/SIGTERM, then stop it cleanly."""
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    task = engine.sweeper(interval)
    task.start()
    try:
        await shutdown.wait()
        logger.info("Shutdown requested")
    finally:
        await task.stop()


async def main(argv: list[str] | None = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code: 0 for success, 1 for failure
    """
    args = build_parser().parse_args(argv)
    load_dotenv()
    settings = get_settings()
    setup_server_logging(settings.log_file, settings.log_level)

    try:
        if args.command == "init-db":
            db_engine = create_engine_from_settings(settings)
            try:
                await create_all_tables(db_engine)
            finally:
                await db_engine.dispose()
            logger.info("Tables created")
            return 0

        engine = ComplianceEngine.from_settings(settings)
        if engine.notifier.transport is None:
            logger.warning("No email transport configured; reminders will be recorded as failed")
        try:
            if args.command == "recalc":
                scores = await engine.recalc_score(args.property_id)
                logger.info("Scores for property %d: %s", args.property_id, scores._asdict())
            elif args.command == "sweep":
                processed = await engine.overdue_sweep()
                logger.info("Sweep processed %d bills", processed)
            elif args.command == "run-sweeper":
                await run_sweeper(engine, args.interval)
        finally:
            await engine.dispose()
        return 0

    except CovenantError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except Exception as e:
        logger.error("%s failed: %s", args.command, e, exc_info=True)
        return 1


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
