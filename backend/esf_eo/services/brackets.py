"""Rank brackets and membership lookup."""

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Bracket:
    """A named rank range [rank_from, rank_to], both ends inclusive."""

    id: int
    name: str
    rank_from: int
    rank_to: int
    active: bool = True

    def contains(self, rank: int) -> bool:
        return self.rank_from <= rank <= self.rank_to


@dataclass(slots=True, frozen=True)
class BracketSeed:
    """Bracket definition before it has a database id."""

    name: str
    rank_from: int
    rank_to: int


# Nested cohorts: every bracket starts at rank 1, so a top-100 entry also
# counts towards every wider bracket.
DEFAULT_BRACKETS: list[BracketSeed] = [
    BracketSeed("Top 100", 1, 100),
    BracketSeed("Top 500", 1, 500),
    BracketSeed("Top 2k", 1, 2000),
    BracketSeed("Top 5k", 1, 5000),
    BracketSeed("Top 10k", 1, 10000),
]


def assign_brackets(rank: int, brackets: Iterable[Bracket]) -> list[Bracket]:
    """Return every bracket whose range contains ``rank``, in input order.

    Ranges may overlap, in which case the entry belongs to all of them.
    """
    return [b for b in brackets if b.contains(rank)]
