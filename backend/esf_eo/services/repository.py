"""asyncpg-backed storage for brackets, entries and effective ownership."""

import logging
from collections.abc import Iterator, Sequence
from typing import TypeVar

import asyncpg

from esf_eo.services.brackets import Bracket, BracketSeed
from esf_eo.services.persistence import EffectiveOwnershipRow
from esf_eo.services.standings import StandingsRow

logger = logging.getLogger(__name__)

T = TypeVar("T")

UPSERT_EFFECTIVE_OWNERSHIP_SQL = """
    INSERT INTO effective_ownership (
        gameweek_id, bracket_id, player_id,
        eo, sample_size, owned_count, captain_count, computed_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
    ON CONFLICT (gameweek_id, bracket_id, player_id) DO UPDATE SET
        eo = EXCLUDED.eo,
        sample_size = EXCLUDED.sample_size,
        owned_count = EXCLUDED.owned_count,
        captain_count = EXCLUDED.captain_count,
        computed_at = EXCLUDED.computed_at
"""

UPSERT_ENTRY_SQL = """
    INSERT INTO entry (
        id, entry_name, player_name, last_overall_rank, last_overall_total, source_league_id
    )
    VALUES ($1, $2, $3, $4, $5, $6)
    ON CONFLICT (id) DO UPDATE SET
        entry_name = EXCLUDED.entry_name,
        player_name = EXCLUDED.player_name,
        last_overall_rank = EXCLUDED.last_overall_rank,
        last_overall_total = EXCLUDED.last_overall_total,
        source_league_id = EXCLUDED.source_league_id,
        updated_at = NOW()
"""

UPSERT_BRACKET_SQL = """
    INSERT INTO bracket (name, rank_from, rank_to, active)
    VALUES ($1, $2, $3, true)
    ON CONFLICT (rank_from, rank_to) DO UPDATE SET
        name = EXCLUDED.name,
        active = true
"""


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    for i in range(0, len(items), size):
        yield items[i : i + size]


class EoRepository:
    """Point lookups and chunked upserts over one database connection."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self.conn = conn

    async def gameweek_exists(self, gameweek: int) -> bool:
        """Check the gameweek row written by the bootstrap sync is present."""
        found = await self.conn.fetchval(
            "SELECT EXISTS (SELECT 1 FROM gameweek WHERE id = $1)", gameweek
        )
        return bool(found)

    async def get_active_brackets(self) -> list[Bracket]:
        """Active brackets, narrowest first."""
        rows = await self.conn.fetch(
            """
            SELECT id, name, rank_from, rank_to, active
            FROM bracket
            WHERE active = true
            ORDER BY rank_to ASC, rank_from ASC
            """
        )
        return [
            Bracket(
                id=row["id"],
                name=row["name"],
                rank_from=row["rank_from"],
                rank_to=row["rank_to"],
                active=row["active"],
            )
            for row in rows
        ]

    async def _upsert_chunked(
        self,
        sql: str,
        args: list[tuple],
        chunk_size: int,
        what: str,
    ) -> int:
        """executemany ``sql`` one transaction per chunk; a failed chunk aborts."""
        written = 0
        for chunk in chunked(args, chunk_size):
            try:
                async with self.conn.transaction():
                    await self.conn.executemany(sql, chunk)
            except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                logger.error(
                    f"Database error upserting {what} rows {written + 1}-{written + len(chunk)}: "
                    f"{type(e).__name__}: {e}"
                )
                raise
            written += len(chunk)
            logger.debug(f"Upserted {written}/{len(args)} {what} rows")
        return written

    async def upsert_effective_ownership(
        self, rows: list[EffectiveOwnershipRow], chunk_size: int = 500
    ) -> int:
        """Upsert EO rows keyed by (gameweek, bracket, player)."""
        args = [
            (
                r.gameweek_id,
                r.bracket_id,
                r.player_id,
                r.eo,
                r.sample_size,
                r.owned_count,
                r.captain_count,
                r.computed_at,
            )
            for r in rows
        ]
        return await self._upsert_chunked(
            UPSERT_EFFECTIVE_OWNERSHIP_SQL, args, chunk_size, "effective_ownership"
        )

    async def upsert_entries(
        self, rows: list[StandingsRow], source_league_id: int, chunk_size: int = 500
    ) -> int:
        """Upsert entries with their latest overall rank and total."""
        args = [
            (r.entry_id, r.entry_name, r.player_name, r.rank, r.total, source_league_id)
            for r in rows
        ]
        return await self._upsert_chunked(UPSERT_ENTRY_SQL, args, chunk_size, "entry")

    async def upsert_brackets(self, seeds: list[BracketSeed]) -> int:
        """Upsert brackets keyed by their rank range and mark them active."""
        args = [(s.name, s.rank_from, s.rank_to) for s in seeds]
        return await self._upsert_chunked(UPSERT_BRACKET_SQL, args, max(len(args), 1), "bracket")
