"""Tests for per-entry picks processing."""

from typing import Any

import pytest
import respx
from httpx import Response

from conftest import BASE_URL, SleepRecorder
from esf_eo.services.brackets import Bracket
from esf_eo.services.fetcher import FetchError, RetryingFetcher
from esf_eo.services.picks import BracketCounters, PickProcessor, parse_picks
from esf_eo.services.standings import RankedEntry

GAMEWEEK = 30


def picks_url(entry_id: int) -> str:
    return f"{BASE_URL}/api/entry/{entry_id}/event/{GAMEWEEK}/picks/"


def pick(element: Any, captain: bool = False, position: int = 1) -> dict[str, Any]:
    return {
        "element": element,
        "position": position,
        "multiplier": 2 if captain else 1,
        "is_captain": captain,
        "is_vice_captain": False,
    }


@pytest.fixture
def processor(
    fetcher: RetryingFetcher, nested_brackets: list[Bracket], sleep_recorder: SleepRecorder
) -> PickProcessor:
    return PickProcessor(fetcher, BASE_URL, GAMEWEEK, nested_brackets, sleep=sleep_recorder)


class TestPickProcessor:
    """Tests for PickProcessor.process."""

    @respx.mock(assert_all_called=False)
    async def test_out_of_range_entry_makes_no_request(
        self, processor: PickProcessor, sleep_recorder: SleepRecorder
    ):
        """Entries outside every bracket should return without sleeping or fetching."""
        route = respx.get(picks_url(5000)).mock(return_value=Response(200, json={"picks": []}))

        counted = await processor.process(RankedEntry(5000, 101), delay=0.5)

        assert counted is False
        assert route.call_count == 0
        assert sleep_recorder.delays == []
        assert all(c.sample_size == 0 for c in processor.counters.values())

    @respx.mock
    async def test_counts_into_every_matching_bracket(self, processor: PickProcessor):
        """A rank-10 entry should count in both nested brackets."""
        respx.get(picks_url(1010)).mock(
            return_value=Response(200, json={"picks": [pick(7, captain=True), pick(8), pick(9)]})
        )

        counted = await processor.process(RankedEntry(1010, 10))

        assert counted is True
        for bracket_id in (1, 2):
            counters = processor.counters[bracket_id]
            assert counters.sample_size == 1
            assert counters.owned == {7: 1, 8: 1, 9: 1}
            assert counters.captains == {7: 1}

    @respx.mock
    async def test_counts_only_matching_brackets(self, processor: PickProcessor):
        """A rank-75 entry belongs to Top 100 only."""
        respx.get(picks_url(1075)).mock(return_value=Response(200, json={"picks": [pick(7)]}))

        await processor.process(RankedEntry(1075, 75))

        assert processor.counters[1].sample_size == 0
        assert processor.counters[2].sample_size == 1
        assert processor.counters[2].owned[7] == 1

    @respx.mock
    async def test_sleeps_fixed_delay_before_fetch(
        self, processor: PickProcessor, sleep_recorder: SleepRecorder
    ):
        """The courtesy delay should be slept once, unjittered."""
        respx.get(picks_url(1001)).mock(return_value=Response(200, json={"picks": []}))

        await processor.process(RankedEntry(1001, 1), delay=0.075)

        assert sleep_recorder.delays == [0.075]

    @respx.mock
    async def test_malformed_picks_count_as_empty(self, processor: PickProcessor):
        """A missing picks list still counts the entry in the sample."""
        respx.get(picks_url(1001)).mock(return_value=Response(200, json={"picks": None}))

        counted = await processor.process(RankedEntry(1001, 1))

        assert counted is True
        assert processor.counters[1].sample_size == 1
        assert processor.counters[1].owned == {}

    @respx.mock
    async def test_fetch_failure_leaves_counters_untouched(self, processor: PickProcessor):
        """A failed fetch should raise and add nothing to any bracket."""
        respx.get(picks_url(1001)).mock(return_value=Response(404))

        with pytest.raises(FetchError):
            await processor.process(RankedEntry(1001, 1))

        for counters in processor.counters.values():
            assert counters.sample_size == 0
            assert counters.owned == {}
            assert counters.captains == {}

    @respx.mock
    async def test_counters_respect_ownership_invariants(self, processor: PickProcessor):
        """owned <= sample_size and captains <= owned for every player."""
        payloads = {
            1001: [pick(7, captain=True), pick(7), pick(8)],
            1002: [pick(8, captain=True), pick(9)],
            1003: [pick(7), pick(9, captain=True), pick(9)],
        }
        for entry_id, picks in payloads.items():
            respx.get(picks_url(entry_id)).mock(return_value=Response(200, json={"picks": picks}))

        for rank, entry_id in enumerate(payloads, start=1):
            await processor.process(RankedEntry(entry_id, rank))

        for counters in processor.counters.values():
            assert counters.sample_size == 3
            for player_id, owned in counters.owned.items():
                assert owned <= counters.sample_size
                assert counters.captains.get(player_id, 0) <= owned
            assert counters.owned == {7: 2, 8: 2, 9: 2}
            assert counters.captains == {7: 1, 8: 1, 9: 1}

    def test_picks_url(self, processor: PickProcessor):
        assert processor.picks_url(42) == f"{BASE_URL}/api/entry/42/event/30/picks/"


class TestParsePicks:
    """Tests for parse_picks."""

    def test_owned_and_captained(self):
        owned, captained = parse_picks({"picks": [pick(1), pick(2, captain=True), pick(3)]})

        assert owned == {1, 2, 3}
        assert captained == {2}

    def test_duplicate_rows_count_once(self):
        """A player listed twice is still owned once."""
        owned, captained = parse_picks({"picks": [pick(5), pick(5, captain=True)]})

        assert owned == {5}
        assert captained == {5}

    def test_skips_rows_without_integer_element(self):
        owned, _ = parse_picks(
            {"picks": [pick("7"), pick(None), pick(True), "junk", {"is_captain": True}, pick(4)]}
        )

        assert owned == {4}

    def test_captain_flag_must_be_true(self):
        """Truthy non-boolean captain flags are not captaincy."""
        _, captained = parse_picks({"picks": [{"element": 3, "is_captain": 1}]})

        assert captained == set()

    @pytest.mark.parametrize("data", [None, [], {}, {"picks": "x"}, {"picks": {"element": 1}}])
    def test_malformed_payloads(self, data: Any):
        assert parse_picks(data) == (set(), set())


class TestBracketCounters:
    def test_add_entry(self):
        counters = BracketCounters()

        counters.add_entry({1, 2}, {2})
        counters.add_entry({2, 3}, set())

        assert counters.sample_size == 2
        assert counters.owned == {1: 1, 2: 2, 3: 1}
        assert counters.captains == {2: 1}
