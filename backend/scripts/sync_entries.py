#!/usr/bin/env python
"""
Sync every entry of the overall league into the entry table.

Walks all standings pages and upserts name, manager name, overall rank and
total for each entry. Rank here is informational only: the EO computation
always uses the rank from its own fresh standings collection.

Usage:
    python -m scripts.sync_entries
    python -m scripts.sync_entries --max-pages 20   # First 20 pages only
"""

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from contextlib import aclosing

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from esf_eo.config import Settings, get_settings
from esf_eo.db import close_pool, get_connection, init_pool
from esf_eo.services.fetcher import RetryingFetcher
from esf_eo.services.repository import EoRepository
from esf_eo.services.standings import StandingsCollector

# Load environment
load_dotenv(".env.local")
load_dotenv(".env")

logger = logging.getLogger(__name__)


async def sync_entries(
    repository: EoRepository,
    collector: StandingsCollector,
    settings: Settings,
    max_pages: int | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """Upsert every entry in the overall league.

    Args:
        repository: Storage for entry rows
        collector: Standings paginator
        settings: Provides league id, chunk size and page delay
        max_pages: Stop after this many pages (all if None)
        sleep: Used for the courtesy delay between pages

    Returns:
        Number of entries upserted

    Raises:
        ValueError: If OVERALL_LEAGUE_ID is not configured
        StandingsError: If a standings page fails after retries
    """
    league_id = settings.overall_league_id
    if league_id is None:
        raise ValueError("Missing env OVERALL_LEAGUE_ID")

    logger.info(f"syncEntries starting: base={settings.esf_base_url}, league={league_id}")
    total_upserted = 0

    async with aclosing(collector.iter_pages(league_id)) as pages:
        async for page in pages:
            total_upserted += await repository.upsert_entries(
                page.rows, league_id, settings.entry_sync_chunk_size
            )
            logger.info(
                f"Page {page.page}: rows={len(page.rows)}, totalUpserted={total_upserted}, "
                f"has_next={page.has_next}"
            )

            if max_pages is not None and page.page >= max_pages:
                logger.info(f"Reached --max-pages {max_pages}, stopping")
                break
            if page.has_next and settings.entry_sync_page_delay > 0:
                await sleep(settings.entry_sync_page_delay)

    logger.info(f"syncEntries done. totalUpserted={total_upserted}")
    return total_upserted


async def main() -> None:
    parser = argparse.ArgumentParser(description="Sync overall league entries")
    parser.add_argument(
        "--max-pages", type=int, default=None, help="Stop after N standings pages"
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        await init_pool()
        async with (
            get_connection() as conn,
            RetryingFetcher(user_agent="esf-eo/syncEntries", timeout=settings.http_timeout) as fetcher,
        ):
            await sync_entries(
                EoRepository(conn),
                StandingsCollector(fetcher, settings.esf_base_url),
                settings,
                max_pages=args.max_pages,
            )
    except Exception as e:
        logger.error(f"syncEntries failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await close_pool()


if __name__ == "__main__":
    asyncio.run(main())
