"""Fixed-size batch execution with bounded parallelism."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from research_fetch.logging import get_logger
from research_fetch.retry import cancellable_sleep

T = TypeVar("T")
R = TypeVar("R")

log = get_logger("research_fetch.scheduler")


@dataclass(frozen=True)
class BatchReport:
    """Outcome counts for one completed batch."""

    index: int
    total_batches: int
    size: int
    succeeded: int
    failed: int


def partition(items: Sequence[T], batch_size: int) -> list[list[T]]:
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]


async def run_batches(
    items: Sequence[T],
    batch_size: int,
    inter_batch_delay_ms: int,
    fetch_fn: Callable[[T], Awaitable[R]],
    *,
    should_continue: Callable[[], bool] | None = None,
    on_batch: Callable[[BatchReport, list[R]], Awaitable[None]] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> list[R]:
    """Run ``fetch_fn`` over ``items`` in consecutive concurrent batches.

    Every fetch in a batch settles before the next batch starts. Failed
    fetches are logged and dropped; successes keep submission order.

    Args:
        items: Work items, typically resolved URLs.
        batch_size: Maximum concurrent fetches.
        inter_batch_delay_ms: Pause between batches (not after the last one).
        fetch_fn: Coroutine function producing a result or raising.
        should_continue: Checked before each batch; False stops scheduling.
        on_batch: Awaited after each batch with its report and successes.
        cancel_event: Cuts the inter-batch pause short and stops scheduling when set.

    Returns:
        Successful results of all batches that ran.
    """
    batches = partition(items, batch_size)
    results: list[R] = []

    for index, batch in enumerate(batches):
        if should_continue is not None and not should_continue():
            log.info("scheduler.stopped", completed_batches=index, total_batches=len(batches))
            break

        slots: list[R | None] = [None] * len(batch)
        failed = 0

        async def _fetch_one(position: int, item: T) -> None:
            nonlocal failed
            try:
                slots[position] = await fetch_fn(item)
            except Exception as e:
                failed += 1
                log.warning("scheduler.fetch_failed", item=str(item), error=str(e))

        async with asyncio.TaskGroup() as tg:
            for position, item in enumerate(batch):
                tg.create_task(_fetch_one(position, item))

        batch_results = [slot for slot in slots if slot is not None]
        results.extend(batch_results)
        report = BatchReport(
            index=index,
            total_batches=len(batches),
            size=len(batch),
            succeeded=len(batch_results),
            failed=failed,
        )
        log.info(
            "scheduler.batch.completed",
            batch=index + 1,
            total_batches=len(batches),
            succeeded=report.succeeded,
            failed=failed,
        )
        if on_batch is not None:
            await on_batch(report, batch_results)

        more_batches = index < len(batches) - 1 and (should_continue is None or should_continue())
        if more_batches and inter_batch_delay_ms > 0:
            if await cancellable_sleep(inter_batch_delay_ms / 1000, cancel_event):
                log.info("scheduler.canceled", completed_batches=index + 1, total_batches=len(batches))
                break

    return results
