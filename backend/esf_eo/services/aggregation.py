"""Two-phase picks aggregation: an aggressive bulk pass, then a slow retry pass.

Upstream rate limiting is bursty under high fan-out. The bulk pass maximizes
throughput and tolerates per-entry failures; the retry pass walks just the
failures at low concurrency with a longer delay to recover the tail.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from esf_eo.services.fetcher import FetchError
from esf_eo.services.picks import PickProcessor
from esf_eo.services.standings import RankedEntry
from esf_eo.services.worker_pool import PassOutcome, process_collecting_failures

logger = logging.getLogger(__name__)

__all__ = [
    "AggregationResult",
    "AggregationRunner",
    "FailureRecord",
    "write_failure_report",
]


@dataclass(slots=True)
class FailureRecord:
    """An entry whose picks could not be fetched."""

    entry_id: int
    rank: int
    error: str


@dataclass
class AggregationResult:
    """Outcome of a full aggregation run."""

    total: int
    processed: int = 0
    recovered: int = 0
    failures: list[FailureRecord] = field(default_factory=list)


def _to_failures(outcome: PassOutcome[RankedEntry]) -> list[FailureRecord]:
    return [
        FailureRecord(entry_id=entry.entry_id, rank=entry.rank, error=str(error))
        for entry, error in outcome.failed
    ]


class AggregationRunner:
    """Drives a PickProcessor over all ranked entries."""

    def __init__(
        self,
        processor: PickProcessor,
        bulk_concurrency: int = 4,
        bulk_delay: float = 0.075,
        final_retry: bool = True,
        retry_concurrency: int = 1,
        retry_delay: float = 0.25,
    ) -> None:
        self.processor = processor
        self.bulk_concurrency = bulk_concurrency
        self.bulk_delay = bulk_delay
        self.final_retry = final_retry
        self.retry_concurrency = retry_concurrency
        self.retry_delay = retry_delay

    async def _run_pass(
        self,
        entries: list[RankedEntry],
        concurrency: int,
        delay: float,
        label: str,
        progress_every: int,
    ) -> PassOutcome[RankedEntry]:
        async def work(entry: RankedEntry) -> bool:
            return await self.processor.process(entry, delay)

        return await process_collecting_failures(
            entries,
            concurrency,
            work,
            catch=(FetchError,),
            label=label,
            progress_every=progress_every,
        )

    async def run(self, entries: list[RankedEntry]) -> AggregationResult:
        """
        Aggregate picks for ``entries``.

        Every entry ends up either counted in the processor's bracket counters
        or in ``result.failures``, never both and never neither.
        """
        result = AggregationResult(total=len(entries))
        start_time = time.monotonic()

        bulk = await self._run_pass(
            entries, self.bulk_concurrency, self.bulk_delay, "Processed", 200
        )
        result.processed = len(bulk.succeeded)
        failures = _to_failures(bulk)

        if self.final_retry and bulk.failed:
            logger.info(f"Final retry pass: attempting {len(bulk.failed)} skipped entries...")
            retry_set = [entry for entry, _ in bulk.failed]
            retry = await self._run_pass(
                retry_set,
                self.retry_concurrency,
                self.retry_delay,
                "Retry pass progress",
                50,
            )
            result.recovered = len(retry.succeeded)
            result.processed += result.recovered
            failures = _to_failures(retry)
            logger.info(
                f"Final retry pass done. recovered={result.recovered}, "
                f"stillFailed={len(failures)}"
            )

        result.failures = failures
        elapsed = time.monotonic() - start_time
        logger.info(
            f"Aggregation complete in {elapsed:.1f}s: {result.processed}/{result.total} "
            f"entries processed, {len(failures)} failed"
        )
        return result


def write_failure_report(failures: list[FailureRecord], path: Path) -> Path:
    """Write ``[{entryId, rank, error}, ...]`` for operator follow-up."""
    payload = [
        {"entryId": f.entry_id, "rank": f.rank, "error": f.error}
        for f in failures
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.warning(
        f"Some entries still failed after retries. Wrote {len(failures)} to {path}"
    )
    return path
