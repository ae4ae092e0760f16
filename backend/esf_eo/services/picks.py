"""Per-entry picks fetching and bracket counter folding."""

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from esf_eo.services.brackets import Bracket, assign_brackets
from esf_eo.services.fetcher import RetryingFetcher
from esf_eo.services.standings import RankedEntry

logger = logging.getLogger(__name__)


@dataclass
class BracketCounters:
    """Running ownership counts for one bracket during one run."""

    sample_size: int = 0
    owned: Counter[int] = field(default_factory=Counter)
    captains: Counter[int] = field(default_factory=Counter)

    def add_entry(self, owned: Iterable[int], captained: Iterable[int]) -> None:
        """Fold one successfully processed entry into the counts."""
        self.sample_size += 1
        self.owned.update(owned)
        self.captains.update(captained)


def parse_picks(data: Any) -> tuple[set[int], set[int]]:
    """
    Extract (owned, captained) player ids from a picks payload.

    Anything malformed reads as "no picks". Each player counts once per entry
    even if it appears in several rows, and a captain is always also owned.
    """
    picks = data.get("picks") if isinstance(data, dict) else None
    if not isinstance(picks, list):
        return set(), set()

    owned: set[int] = set()
    captained: set[int] = set()
    for pick in picks:
        if not isinstance(pick, dict):
            continue
        player_id = pick.get("element")
        if not isinstance(player_id, int) or isinstance(player_id, bool):
            continue
        owned.add(player_id)
        if pick.get("is_captain") is True:
            captained.add(player_id)
    return owned, captained


class PickProcessor:
    """
    Fetches one entry's gameweek picks and adds them to every bracket the
    entry's rank falls into.

    Counters are created for all given brackets up front and only mutated
    after a fetch has succeeded, with no await in between, so a failed entry
    never leaves partial counts behind.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        base_url: str,
        gameweek: int,
        brackets: list[Bracket],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.gameweek = gameweek
        self.brackets = brackets
        self.counters: dict[int, BracketCounters] = {b.id: BracketCounters() for b in brackets}
        self._sleep = sleep

    def picks_url(self, entry_id: int) -> str:
        return f"{self.base_url}/api/entry/{entry_id}/event/{self.gameweek}/picks/"

    async def process(self, entry: RankedEntry, delay: float = 0.0) -> bool:
        """
        Process one entry.

        Args:
            entry: Entry with the rank used for bracket membership
            delay: Fixed courtesy pause in seconds before the request

        Returns:
            True if the entry was counted, False if it is outside every bracket

        Raises:
            FetchError: If the picks request fails after retries
        """
        member_brackets = assign_brackets(entry.rank, self.brackets)
        if not member_brackets:
            return False

        if delay > 0:
            await self._sleep(delay)

        data = await self.fetcher.fetch(self.picks_url(entry.entry_id))
        owned, captained = parse_picks(data)

        for bracket in member_brackets:
            self.counters[bracket.id].add_entry(owned, captained)
        return True
