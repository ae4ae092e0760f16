#!/usr/bin/env python
"""
Compute effective ownership (EO) per bracket for one gameweek.

Collects the top MAX_OVERALL_RANK entries of the overall league, fetches each
entry's picks for the gameweek, and upserts EO per (gameweek, bracket, player).
Safe to re-run: existing rows for the gameweek are overwritten.

Usage:
    python -m scripts.compute_eo 30
    EO_CONCURRENCY=2 EO_REQUEST_DELAY_MS=150 python -m scripts.compute_eo 30

Configuration (environment):
    OVERALL_LEAGUE_ID           Overall league id (required)
    MAX_OVERALL_RANK            Worst rank to include (default 10000)
    EO_CONCURRENCY              Bulk pass workers (default 4)
    EO_REQUEST_DELAY_MS         Bulk pass delay per request (default 75)
    EO_FINAL_RETRY_PASS         Retry failed entries at the end (default true)
    EO_FINAL_RETRY_CONCURRENCY  Retry pass workers (default 1)
    EO_FINAL_RETRY_DELAY_MS     Retry pass delay per request (default 250)

Requires the gameweek to be synced and brackets to be seeded first.
Entries that still fail after the retry pass are written to
computeEO_failed_gw<N>.json for follow-up.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from esf_eo.config import get_settings
from esf_eo.db import close_pool, get_connection, init_pool
from esf_eo.services.eo_pipeline import EoRunReport, compute_effective_ownership
from esf_eo.services.fetcher import RetryingFetcher
from esf_eo.services.repository import EoRepository

# Load environment
load_dotenv(".env.local")
load_dotenv(".env")

logger = logging.getLogger(__name__)


def positive_int(value: str) -> int:
    """argparse type for a gameweek number."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid gameweek: {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"gameweek must be positive, got {number}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compute effective ownership per bracket for a gameweek"
    )
    parser.add_argument("gameweek", type=positive_int, help="Gameweek number, e.g. 30")
    return parser.parse_args(argv)


def print_summary(report: EoRunReport) -> None:
    print(f"\nEffective Ownership GW{report.gameweek}")
    print("-" * 40)
    print(f"Entries collected:   {report.entries}")
    print(f"Entries processed:   {report.processed}")
    print(f"Recovered on retry:  {report.recovered}")
    print(f"Still failed:        {len(report.failures)}")
    print(f"Rows written:        {report.rows_written}")
    if report.skipped_brackets:
        print(f"Skipped brackets:    {', '.join(report.skipped_brackets)}")
    if report.failure_file:
        print(f"Failure report:      {report.failure_file}")
    print("-" * 40)


async def run(gameweek: int) -> EoRunReport:
    settings = get_settings()
    await init_pool()
    try:
        async with (
            get_connection() as conn,
            RetryingFetcher(user_agent=settings.user_agent, timeout=settings.http_timeout) as fetcher,
        ):
            return await compute_effective_ownership(
                EoRepository(conn), fetcher, settings, gameweek
            )
    finally:
        await close_pool()


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        report = await run(args.gameweek)
    except Exception as e:
        logger.error(f"computeEO failed: {e}", exc_info=True)
        sys.exit(1)

    print_summary(report)


if __name__ == "__main__":
    asyncio.run(main())
