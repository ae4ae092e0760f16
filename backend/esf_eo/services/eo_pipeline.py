"""
Compute per-bracket effective ownership for one gameweek.

Steps:
1. Preconditions - league configured, gameweek synced, active brackets seeded
2. Standings - collect the top ``max_overall_rank`` entries of the overall league
3. Aggregation - fetch picks for every entry (bulk pass + final retry pass)
4. Failure report - entries that never succeeded go to a JSON side file
5. Persistence - chunked, idempotent upsert of the EO rows

Any failure in 1, 2 or 5 aborts the run. Per-entry failures in 3 are
recorded and reported, never fatal.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from esf_eo.config import Settings
from esf_eo.services.aggregation import AggregationRunner, FailureRecord, write_failure_report
from esf_eo.services.fetcher import RetryingFetcher
from esf_eo.services.persistence import build_rows, persist_effective_ownership
from esf_eo.services.picks import PickProcessor
from esf_eo.services.repository import EoRepository
from esf_eo.services.standings import StandingsCollector

logger = logging.getLogger(__name__)


class PreconditionError(RuntimeError):
    """The run cannot start; reference data or configuration is missing."""


@dataclass
class EoRunReport:
    """Summary of one EO computation."""

    gameweek: int
    entries: int = 0
    processed: int = 0
    recovered: int = 0
    failures: list[FailureRecord] = field(default_factory=list)
    rows_written: int = 0
    skipped_brackets: list[str] = field(default_factory=list)
    failure_file: Path | None = None


def failure_report_path(settings: Settings, gameweek: int) -> Path:
    return Path(settings.eo_failure_report_dir) / f"computeEO_failed_gw{gameweek}.json"


async def compute_effective_ownership(
    repository: EoRepository,
    fetcher: RetryingFetcher,
    settings: Settings,
    gameweek: int,
    now: datetime | None = None,
) -> EoRunReport:
    """Run the full EO pipeline for ``gameweek``.

    Args:
        repository: Storage for brackets, gameweeks and EO rows
        fetcher: Shared retrying HTTP fetcher
        settings: Pipeline configuration
        gameweek: Gameweek to compute
        now: Timestamp stored as computed_at (defaults to current UTC time)

    Returns:
        EoRunReport describing what was processed, skipped and written

    Raises:
        PreconditionError: League id missing, gameweek unknown, or no active brackets
        StandingsError: Standings collection failed
        asyncpg.PostgresError: A persistence chunk failed
    """
    league_id = settings.overall_league_id
    if league_id is None:
        raise PreconditionError("Missing env OVERALL_LEAGUE_ID. Set it to the overall league id.")

    logger.info(
        f"computeEO starting: gw={gameweek}, base={settings.esf_base_url}, "
        f"league={league_id}, maxRank={settings.max_overall_rank}, "
        f"concurrency={settings.eo_concurrency}, requestDelayMs={settings.eo_request_delay_ms}"
    )

    if not await repository.gameweek_exists(gameweek):
        raise PreconditionError(
            f"Gameweek {gameweek} not found in DB. Run the gameweek sync first."
        )

    brackets = await repository.get_active_brackets()
    if not brackets:
        raise PreconditionError("No active brackets in DB. Run scripts.seed_brackets first.")
    logger.info(
        f"Loaded {len(brackets)} active brackets: {', '.join(b.name for b in brackets)}"
    )

    collector = StandingsCollector(fetcher, settings.esf_base_url)
    entries = await collector.collect(league_id, settings.max_overall_rank)

    processor = PickProcessor(fetcher, settings.esf_base_url, gameweek, brackets)
    runner = AggregationRunner(
        processor,
        bulk_concurrency=settings.eo_concurrency,
        bulk_delay=settings.eo_request_delay,
        final_retry=settings.eo_final_retry_pass,
        retry_concurrency=settings.eo_final_retry_concurrency,
        retry_delay=settings.eo_final_retry_delay,
    )
    result = await runner.run(entries)

    report = EoRunReport(
        gameweek=gameweek,
        entries=len(entries),
        processed=result.processed,
        recovered=result.recovered,
        failures=result.failures,
    )

    # Written before persistence so the undercount is on record even if a write fails
    if result.failures:
        report.failure_file = write_failure_report(
            result.failures, failure_report_path(settings, gameweek)
        )

    logger.info("Finished fetching picks. Writing aggregates to DB...")
    plan = build_rows(gameweek, brackets, processor.counters, computed_at=now)
    report.skipped_brackets = [b.name for b in plan.skipped_brackets]
    report.rows_written = await persist_effective_ownership(
        repository, plan, settings.eo_upsert_chunk_size
    )

    logger.info(
        f"computeEO done: gw={gameweek}, entries={report.entries}, "
        f"processed={report.processed}, failed={len(report.failures)}, "
        f"rows={report.rows_written}"
    )
    return report
