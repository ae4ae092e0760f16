"""Turn bracket counters into effective ownership rows and write them."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from esf_eo.services.brackets import Bracket
from esf_eo.services.picks import BracketCounters

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500


@dataclass(slots=True, frozen=True)
class EffectiveOwnershipRow:
    """One stored EO value, keyed by (gameweek_id, bracket_id, player_id)."""

    gameweek_id: int
    bracket_id: int
    player_id: int
    eo: float
    sample_size: int
    owned_count: int
    captain_count: int
    computed_at: datetime


@dataclass
class PersistPlan:
    """Rows to write plus the brackets that had nothing to write."""

    rows: list[EffectiveOwnershipRow] = field(default_factory=list)
    skipped_brackets: list[Bracket] = field(default_factory=list)


class EffectiveOwnershipStore(Protocol):
    async def upsert_effective_ownership(
        self, rows: list[EffectiveOwnershipRow], chunk_size: int
    ) -> int: ...


def effective_ownership(owned: int, captained: int, sample_size: int) -> float:
    """EO with the captain counted twice; can exceed 1.0."""
    return (owned + captained) / sample_size


def build_rows(
    gameweek: int,
    brackets: list[Bracket],
    counters: dict[int, BracketCounters],
    computed_at: datetime | None = None,
) -> PersistPlan:
    """
    Build EO rows for every bracket with a non-zero sample.

    Players are the union of owned and captained ids, sorted so identical
    counters always produce identical rows. Brackets with sample_size 0 are
    reported in ``skipped_brackets`` and produce no rows.
    """
    computed_at = computed_at or datetime.now(UTC)
    plan = PersistPlan()

    for bracket in brackets:
        agg = counters.get(bracket.id)
        if agg is None or agg.sample_size == 0:
            logger.warning(f"Bracket {bracket.name} has sampleSize=0. Skipping.")
            plan.skipped_brackets.append(bracket)
            continue

        player_ids = sorted(set(agg.owned) | set(agg.captains))
        logger.info(
            f"Bracket {bracket.name}: sampleSize={agg.sample_size}, players={len(player_ids)}"
        )
        for player_id in player_ids:
            owned = agg.owned.get(player_id, 0)
            captained = agg.captains.get(player_id, 0)
            plan.rows.append(
                EffectiveOwnershipRow(
                    gameweek_id=gameweek,
                    bracket_id=bracket.id,
                    player_id=player_id,
                    eo=effective_ownership(owned, captained, agg.sample_size),
                    sample_size=agg.sample_size,
                    owned_count=owned,
                    captain_count=captained,
                    computed_at=computed_at,
                )
            )

    return plan


async def persist_effective_ownership(
    store: EffectiveOwnershipStore,
    plan: PersistPlan,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Upsert the plan's rows; each chunk is its own transaction."""
    if not plan.rows:
        logger.warning("No effective ownership rows to write")
        return 0
    written = await store.upsert_effective_ownership(plan.rows, chunk_size)
    logger.info(f"Upserted {written} effective ownership rows")
    return written
