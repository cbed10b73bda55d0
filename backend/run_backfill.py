"""
Contact Backfill Runner

Links the legacy module tables to agency contacts and matches unmatched
sales. Safe to run repeatedly; Ctrl+C stops after the current agency.

Run:
    python run_backfill.py --agency <uuid> [--agency <uuid> ...]
    python run_backfill.py --agency <uuid> --table renewal_records --no-sales
"""

import argparse
import asyncio
import json
import logging
import signal
import sys

from config import get_settings
from database import get_session_factory, dispose_engine
from backfill import BackfillOrchestrator, SOURCE_TABLES
from logging_config import setup_logging
from sentry_integration import init_sentry

logger = logging.getLogger("run_backfill")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Backfill agency contacts from legacy module tables")
    parser.add_argument("--agency", dest="agencies", action="append", required=True,
                        help="Agency id (repeatable)")
    parser.add_argument("--table", dest="tables", action="append", choices=sorted(SOURCE_TABLES),
                        help="Restrict to a source table (repeatable); default is all")
    parser.add_argument("--no-sales", action="store_true",
                        help="Skip the sale-matching backfill")
    parser.add_argument("--batch-size", type=int, default=None)
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.is_production)
    init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT, release=settings.API_VERSION)

    stop_requested = False

    def request_stop(*_):
        nonlocal stop_requested
        stop_requested = True
        logger.warning("Stop requested; finishing current agency")

    signal.signal(signal.SIGINT, request_stop)

    try:
        async with get_session_factory()() as session:
            orchestrator = BackfillOrchestrator(session, batch_size=args.batch_size)
            reports = await orchestrator.run_for_agencies(
                args.agencies,
                tables=args.tables,
                include_sales=not args.no_sales,
                should_stop=lambda: stop_requested
            )
    finally:
        await dispose_engine()

    print(json.dumps([r.to_dict() for r in reports], indent=2))
    return 1 if any(r.errors for r in reports) else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
