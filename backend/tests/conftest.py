"""Shared pytest fixtures for backend tests."""

import random
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import asyncpg
import pytest

from esf_eo.config import Settings
from esf_eo.services.brackets import Bracket
from esf_eo.services.fetcher import RetryingFetcher

BASE_URL = "https://fantasy.test"
LEAGUE_ID = 321


class SleepRecorder:
    """Async sleep replacement that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeTransaction:
    async def __aenter__(self) -> "FakeTransaction":
        return self

    async def __aexit__(self, *exc: object) -> bool:
        return False


class FakeConnection:
    """In-memory stand-in for the asyncpg calls EoRepository makes.

    Upserts are keyed the same way as the real tables, so writing the same
    rows twice leaves the stored state unchanged.
    """

    def __init__(
        self,
        gameweeks: tuple[int, ...] = (),
        brackets: list[Bracket] | None = None,
        fail_on_call: int | None = None,
    ) -> None:
        self.gameweeks = set(gameweeks)
        self.brackets = brackets or []
        self.fail_on_call = fail_on_call
        self.effective_ownership: dict[tuple[int, int, int], tuple[Any, ...]] = {}
        self.entries: dict[int, tuple[Any, ...]] = {}
        self.bracket_rows: dict[tuple[int, int], str] = {}
        self.executemany_calls: list[tuple[str, list[tuple]]] = []
        self.transactions = 0

    def transaction(self) -> FakeTransaction:
        self.transactions += 1
        return FakeTransaction()

    async def fetchval(self, sql: str, *args: Any) -> Any:
        if "FROM gameweek" in sql:
            return args[0] in self.gameweeks
        raise AssertionError(f"Unexpected fetchval: {sql}")

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        if "FROM bracket" in sql:
            active = [b for b in self.brackets if b.active]
            active.sort(key=lambda b: (b.rank_to, b.rank_from))
            return [
                {
                    "id": b.id,
                    "name": b.name,
                    "rank_from": b.rank_from,
                    "rank_to": b.rank_to,
                    "active": b.active,
                }
                for b in active
            ]
        raise AssertionError(f"Unexpected fetch: {sql}")

    async def executemany(self, sql: str, args: Any) -> None:
        args = list(args)
        self.executemany_calls.append((sql, args))
        if self.fail_on_call is not None and len(self.executemany_calls) == self.fail_on_call:
            raise asyncpg.PostgresError("deadlock detected")

        if "INSERT INTO effective_ownership" in sql:
            for row in args:
                self.effective_ownership[tuple(row[:3])] = tuple(row[3:])
        elif "INSERT INTO entry" in sql:
            for row in args:
                self.entries[row[0]] = tuple(row[1:])
        elif "INSERT INTO bracket" in sql:
            for row in args:
                self.bracket_rows[(row[1], row[2])] = row[0]
        else:
            raise AssertionError(f"Unexpected executemany: {sql}")


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
async def fetcher(sleep_recorder: SleepRecorder) -> AsyncIterator[RetryingFetcher]:
    """Fetcher whose backoff waits are recorded, not slept."""
    fetcher = RetryingFetcher(
        user_agent="esf-eo/test", sleep=sleep_recorder, rng=random.Random(42)
    )
    yield fetcher
    await fetcher.close()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Pipeline settings with no courtesy delays and a temp report dir."""
    return Settings(
        _env_file=None,
        esf_base_url=BASE_URL,
        overall_league_id=LEAGUE_ID,
        max_overall_rank=100,
        eo_concurrency=4,
        eo_request_delay_ms=0,
        eo_final_retry_delay_ms=0,
        eo_failure_report_dir=str(tmp_path),
        entry_sync_page_delay_ms=0,
    )


@pytest.fixture
def nested_brackets() -> list[Bracket]:
    return [
        Bracket(id=1, name="Top 50", rank_from=1, rank_to=50),
        Bracket(id=2, name="Top 100", rank_from=1, rank_to=100),
    ]


def standings_payload(
    rows: list[tuple[int, int]], has_next: bool, page: int = 1
) -> dict[str, Any]:
    """Build a standings response from (rank, entry_id) pairs."""
    return {
        "standings": {
            "has_next": has_next,
            "page": page,
            "results": [
                {
                    "rank": rank,
                    "entry": entry_id,
                    "entry_name": f"Team {entry_id}",
                    "player_name": f"Manager {entry_id}",
                    "total": 2000 - rank,
                }
                for rank, entry_id in rows
            ],
        }
    }


def ranked_pages(total: int, per_page: int, entry_offset: int = 1000) -> list[dict[str, Any]]:
    """Standings pages for ranks 1..total where entry_id = entry_offset + rank."""
    pages = []
    for start in range(1, total + 1, per_page):
        ranks = range(start, min(start + per_page, total + 1))
        pages.append(
            standings_payload(
                [(rank, entry_offset + rank) for rank in ranks],
                has_next=start + per_page <= total,
                page=len(pages) + 1,
            )
        )
    return pages
