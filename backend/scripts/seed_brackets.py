#!/usr/bin/env python
"""
Seed the default rank brackets (Top 100 ... Top 10k).

Brackets are keyed by rank range, so re-running only refreshes names and
re-activates them.

Usage:
    python -m scripts.seed_brackets
"""

import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from esf_eo.db import close_pool, get_connection, init_pool
from esf_eo.services.brackets import DEFAULT_BRACKETS, BracketSeed
from esf_eo.services.repository import EoRepository

# Load environment
load_dotenv(".env.local")
load_dotenv(".env")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def seed_brackets(
    repository: EoRepository, seeds: list[BracketSeed] = DEFAULT_BRACKETS
) -> int:
    """Upsert ``seeds`` and return how many were written."""
    upserted = await repository.upsert_brackets(seeds)
    for seed in seeds:
        logger.info(f"Upserted {seed.name} ({seed.rank_from}-{seed.rank_to})")
    logger.info(f"Done seeding {upserted} brackets.")
    return upserted


async def main() -> None:
    try:
        await init_pool()
        async with get_connection() as conn:
            await seed_brackets(EoRepository(conn))
    except Exception as e:
        logger.error(f"seedBrackets failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await close_pool()


if __name__ == "__main__":
    asyncio.run(main())
