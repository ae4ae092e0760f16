"""Bounded-concurrency worker pool over an ordered input list.

Workers are asyncio tasks sharing one claim cursor. Because everything runs on
a single event loop, claiming ``cursor += 1`` is never interleaved with another
worker, so no index is processed twice or skipped.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

__all__ = ["PassOutcome", "process_collecting_failures", "run_bounded"]


async def run_bounded(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """Run ``worker(item, index)`` over ``items`` with at most ``concurrency`` in flight.

    Args:
        items: Ordered inputs
        concurrency: Number of concurrent workers (>= 1)
        worker: Async unit of work

    Returns:
        Results index-aligned with ``items`` regardless of completion order

    Raises:
        ValueError: If concurrency < 1
        Exception: The first error escaping ``worker``; the remaining workers
            are cancelled before it is re-raised
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    results: list[R] = [None] * len(items)  # type: ignore[list-item]
    cursor = 0

    async def run_one() -> None:
        nonlocal cursor
        while True:
            idx = cursor
            if idx >= len(items):
                return
            cursor += 1
            results[idx] = await worker(items[idx], idx)

    tasks = [asyncio.create_task(run_one()) for _ in range(min(concurrency, max(len(items), 1)))]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    return results


@dataclass
class PassOutcome(Generic[T]):
    """Items that made it through a pass and the ones that raised."""

    succeeded: list[T] = field(default_factory=list)
    failed: list[tuple[T, BaseException]] = field(default_factory=list)


async def process_collecting_failures(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T], Awaitable[object]],
    catch: tuple[type[BaseException], ...] = (Exception,),
    label: str = "Processed",
    progress_every: int = 200,
) -> PassOutcome[T]:
    """Run a pool where per-item errors are collected instead of aborting the pool.

    Errors not listed in ``catch`` still propagate and abort the whole pass.
    The same call can be repeated over ``outcome.failed`` with different
    concurrency or delay to retry just the failures.
    """
    outcome: PassOutcome[T] = PassOutcome()
    total = len(items)

    async def guarded(item: T, idx: int) -> None:
        try:
            await worker(item)
            outcome.succeeded.append(item)
        except catch as e:
            outcome.failed.append((item, e))

        done = len(outcome.succeeded) + len(outcome.failed)
        if done % progress_every == 0 or done == total:
            logger.info(
                f"{label} {done}/{total}... ok={len(outcome.succeeded)}, "
                f"failed={len(outcome.failed)}"
            )

    await run_bounded(items, concurrency, guarded)
    return outcome
