"""Ranked-league standings pagination."""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from esf_eo.services.fetcher import FetchError, RetryingFetcher

logger = logging.getLogger(__name__)


class StandingsError(RuntimeError):
    """A standings page could not be fetched; the ranked set is unusable."""


@dataclass(slots=True, frozen=True)
class RankedEntry:
    """An entry and the rank it held when standings were collected."""

    entry_id: int
    rank: int


@dataclass(slots=True)
class StandingsRow:
    """One row of a classic league standings page."""

    entry_id: int
    rank: int
    entry_name: str
    player_name: str
    total: int


@dataclass(slots=True)
class StandingsPage:
    """One parsed standings page plus what upstream reported about it."""

    page: int
    has_next: bool
    rows: list[StandingsRow]
    raw_count: int  # rows upstream returned, including unparseable ones
    last_rank: int | None = None  # rank of the last raw row, if numeric


def _as_int(val: Any) -> int | None:
    """Return ``val`` if it is a real integer (bools excluded), else None."""
    if isinstance(val, int) and not isinstance(val, bool):
        return val
    return None


def parse_standings_page(page: int, data: Any) -> StandingsPage:
    """Parse a standings payload, dropping rows without an integer rank and entry.

    A missing or garbled ``standings`` object reads as an empty last page.
    """
    standings = data.get("standings") if isinstance(data, dict) else None
    if not isinstance(standings, dict):
        standings = {}
    results = standings.get("results")
    if not isinstance(results, list):
        results = []

    rows = []
    for row in results:
        if not isinstance(row, dict):
            continue
        rank = _as_int(row.get("rank"))
        entry_id = _as_int(row.get("entry"))
        if rank is None or entry_id is None:
            logger.debug(f"Skipping standings row without numeric rank/entry: {row}")
            continue
        rows.append(
            StandingsRow(
                entry_id=entry_id,
                rank=rank,
                entry_name=str(row.get("entry_name") or ""),
                player_name=str(row.get("player_name") or ""),
                total=_as_int(row.get("total")) or 0,
            )
        )

    return StandingsPage(
        page=page,
        has_next=bool(standings.get("has_next")),
        rows=rows,
        raw_count=len(results),
        last_rank=_as_int(results[-1].get("rank"))
        if results and isinstance(results[-1], dict)
        else None,
    )


def dedupe_by_rank(entries: list[RankedEntry]) -> list[RankedEntry]:
    """Sort by rank ascending and keep the first occurrence of each entry id.

    Pages are not a consistent snapshot: an entry whose rank moves between
    two page fetches can show up twice. The lower (earlier) rank wins.
    """
    seen: set[int] = set()
    deduped = []
    for entry in sorted(entries, key=lambda e: e.rank):
        if entry.entry_id in seen:
            continue
        seen.add(entry.entry_id)
        deduped.append(entry)
    return deduped


class StandingsCollector:
    """Walks ``/leagues-classic/{id}/standings/`` one page at a time."""

    def __init__(self, fetcher: RetryingFetcher, base_url: str) -> None:
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")

    def page_url(self, league_id: int, page: int) -> str:
        return (
            f"{self.base_url}/api/leagues-classic/{league_id}/standings/"
            f"?page_standings={page}&phase=1"
        )

    async def iter_pages(self, league_id: int) -> AsyncIterator[StandingsPage]:
        """
        Yield standings pages in order until the league is exhausted.

        Pages are fetched strictly sequentially; a page is only requested
        after the caller has consumed the previous one, so callers can stop
        early without paying for extra requests.

        Raises:
            StandingsError: If a page fails after the fetcher's retries
        """
        page = 1
        while True:
            url = self.page_url(league_id, page)
            try:
                data = await self.fetcher.fetch(url)
            except FetchError as e:
                raise StandingsError(
                    f"Failed to fetch standings page {page} for league {league_id} "
                    f"({url}): {e}"
                ) from e

            parsed = parse_standings_page(page, data)
            if parsed.raw_count == 0:
                logger.info(f"Standings page {page}: 0 rows. Stopping.")
                return

            yield parsed

            if not parsed.has_next:
                return
            page += 1

    async def collect(self, league_id: int, max_rank: int) -> list[RankedEntry]:
        """
        Collect every entry ranked at or above ``max_rank``.

        Args:
            league_id: Classic league to read (the overall league for EO)
            max_rank: Worst rank to include

        Returns:
            Unique entries sorted by rank ascending
        """
        collected: list[RankedEntry] = []
        pages = 0

        async with aclosing(self.iter_pages(league_id)) as page_iter:
            async for page in page_iter:
                pages += 1
                for row in page.rows:
                    if row.rank <= max_rank:
                        collected.append(RankedEntry(entry_id=row.entry_id, rank=row.rank))

                logger.info(
                    f"Standings page {page.page}: got {page.raw_count} rows. "
                    f"collected={len(collected)}. has_next={page.has_next}"
                )

                # Pages are rank ordered, nothing after this page can qualify
                if page.last_rank is not None and page.last_rank >= max_rank:
                    break

        entries = dedupe_by_rank(collected)
        logger.info(
            f"Collected {len(entries)} unique entries up to rank {max_rank} "
            f"from {pages} pages."
        )
        return entries
