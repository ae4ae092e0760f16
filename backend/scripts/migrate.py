#!/usr/bin/env python
"""
Apply the SQL files in backend/migrations/ in filename order.

Each file runs in its own transaction and is recorded in _migrations, so
re-running only applies files added since the last run.

Usage:
    python -m scripts.migrate           # Apply pending migrations
    python -m scripts.migrate --status  # List applied / pending files
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import asyncpg
from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from esf_eo.config import get_settings

load_dotenv(".env.local")
load_dotenv(".env")

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"


def pending_migrations(applied: set[str], directory: Path = MIGRATIONS_DIR) -> list[Path]:
    """SQL files in ``directory`` not yet in ``applied``, sorted by name."""
    return [path for path in sorted(directory.glob("*.sql")) if path.name not in applied]


async def applied_migrations(conn: asyncpg.Connection) -> set[str]:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS _migrations (
            name TEXT PRIMARY KEY,
            applied_at TIMESTAMPTZ DEFAULT NOW()
        )
        """
    )
    rows = await conn.fetch("SELECT name FROM _migrations ORDER BY name")
    return {row["name"] for row in rows}


async def apply_pending(conn: asyncpg.Connection, directory: Path = MIGRATIONS_DIR) -> int:
    """Apply every pending file; a failing file aborts and is not recorded."""
    pending = pending_migrations(await applied_migrations(conn), directory)
    if not pending:
        logger.info("No pending migrations.")
        return 0

    for path in pending:
        logger.info(f"Applying {path.name}...")
        async with conn.transaction():
            await conn.execute(path.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO _migrations (name) VALUES ($1)", path.name)

    logger.info(f"Applied {len(pending)} migration(s).")
    return len(pending)


async def show_status(conn: asyncpg.Connection, directory: Path = MIGRATIONS_DIR) -> None:
    applied = await applied_migrations(conn)
    for path in sorted(directory.glob("*.sql")):
        status = "applied" if path.name in applied else "pending"
        print(f"  {status:8} {path.name}")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Database migration runner")
    parser.add_argument("--status", action="store_true", help="Show migration status")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        conn = await asyncpg.connect(settings.database_url)
    except (OSError, asyncpg.PostgresError) as e:
        logger.error(f"Failed to connect to database: {e}")
        sys.exit(1)

    try:
        if args.status:
            await show_status(conn)
        else:
            await apply_pending(conn)
    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(main())
