#!/usr/bin/env python3
"""CLI entry point for daily metrics ingestion.

Usage:
    # Ingest yesterday's data from every source
    PYTHONPATH=. python scripts/run_ingestion.py

    # Ingest a specific date
    PYTHONPATH=. python scripts/run_ingestion.py --date 2025-01-14

    # Re-ingest a date range from one source
    PYTHONPATH=. python scripts/run_ingestion.py --start 2025-01-01 --end 2025-01-07 --source revenuecat

    # Fill recent dates missing a successful run
    PYTHONPATH=. python scripts/run_ingestion.py --backfill
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

import aiohttp

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.pulse_core.config import Settings
from src.pulse_core.ingestion.pipeline import IngestionPipeline
from src.pulse_core.storage.schema import connect, init_database
from src.pulse_core.storage.store import MetricsStore


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Pulse metrics ingestion")
    parser.add_argument(
        "--date",
        type=str,
        help="Specific date to ingest (YYYY-MM-DD). Defaults to yesterday.",
    )
    parser.add_argument(
        "--start",
        type=str,
        help="Start date for range re-ingestion (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--end",
        type=str,
        help="End date for range re-ingestion (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--source",
        action="append",
        help="Only run this source (repeatable). See --list-sources.",
    )
    parser.add_argument(
        "--backfill",
        action="store_true",
        help="Ingest recent dates without a successful run (PULSE_BACKFILL_DAYS)",
    )
    parser.add_argument(
        "--list-sources",
        action="store_true",
        help="Print registered source names and exit",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    settings = Settings.from_env()
    init_database(settings.db_path)
    conn = connect(settings.db_path)

    try:
        store = MetricsStore(conn)
        timeout = aiohttp.ClientTimeout(total=300, connect=30)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            pipeline = IngestionPipeline(store, session, settings)

            if args.list_sources:
                for name in pipeline.available_sources():
                    print(name)
                return 0

            if args.backfill:
                summaries = await pipeline.backfill()
            elif args.start and args.end:
                start_date = datetime.strptime(args.start, "%Y-%m-%d").date()
                end_date = datetime.strptime(args.end, "%Y-%m-%d").date()

                summaries = []
                current_date = start_date
                while current_date <= end_date:
                    summaries.append(await pipeline.run(current_date, args.source))
                    current_date += timedelta(days=1)
            else:
                target_date = None
                if args.date:
                    target_date = datetime.strptime(args.date, "%Y-%m-%d").date()
                summaries = [await pipeline.run(target_date, args.source)]
    finally:
        conn.close()

    return 1 if any(summary.failed_sources for summary in summaries) else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
