"""Bounded fan-out of async work over sibling items."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import Any, Callable, Generic, Literal, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Scheduling = Literal["batch", "pool"]


@dataclass
class BranchOutcome(Generic[T, R]):
    """Result or error of one branch of a fan-out."""

    item: T
    result: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _first_error(results: Sequence[Any]) -> Optional[BaseException]:
    for result in results:
        if isinstance(result, BaseException):
            return result
    return None


async def run_serial(items: Sequence[T], worker: Callable[[T], Awaitable[R]]) -> list[R]:
    """One item at a time, stopping at the first failure."""
    return [await worker(item) for item in items]


async def run_batched(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[R]:
    """
    Run ``worker`` over consecutive groups of ``limit`` items.

    Each group runs concurrently and is awaited as a whole before the next
    one starts. When a worker fails, its siblings in the same group still
    finish, then the first error is raised and later groups never start.

    Args:
        items: Items to process, in order
        worker: Coroutine function called once per item
        limit: Group size; ``<= 0`` runs serially

    Returns:
        Worker results in item order
    """
    if limit <= 0:
        return await run_serial(items, worker)

    results: list[R] = []
    for start in range(0, len(items), limit):
        group = items[start : start + limit]
        outcomes = await asyncio.gather(*(worker(item) for item in group), return_exceptions=True)
        error = _first_error(outcomes)
        if error is not None:
            raise error
        results.extend(outcomes)  # type: ignore[arg-type]
    return results


async def run_pooled(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[R]:
    """
    Run ``worker`` with at most ``limit`` items in flight.

    A new item starts as soon as any running one finishes. After the first
    failure no further items are started; running ones finish and the error
    is raised.
    """
    if limit <= 0:
        return await run_serial(items, worker)

    semaphore = asyncio.Semaphore(limit)
    failed = asyncio.Event()

    async def guarded(item: T) -> Optional[R]:
        async with semaphore:
            if failed.is_set():
                return None
            try:
                return await worker(item)
            except Exception:
                failed.set()
                raise

    outcomes = await asyncio.gather(*(guarded(item) for item in items), return_exceptions=True)
    error = _first_error(outcomes)
    if error is not None:
        raise error
    return list(outcomes)  # type: ignore[arg-type]


async def dispatch(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
    scheduling: Scheduling = "batch",
    isolate_failures: bool = False,
) -> list[BranchOutcome[T, R]]:
    """
    Fan ``worker`` out over ``items`` with the configured strategy.

    With ``isolate_failures`` every branch gets an outcome and nothing is
    raised; otherwise the first failure propagates as described for
    ``run_batched`` and ``run_pooled``.

    Example:
        outcomes = await dispatch(child_ids, process_child, limit=5)
        failed = [o.item for o in outcomes if not o.ok]
    """
    if isolate_failures:

        async def run(item: T) -> BranchOutcome[T, R]:
            try:
                return BranchOutcome(item=item, result=await worker(item))
            except Exception as e:
                logger.error(f"Branch {item} failed: {e}")
                return BranchOutcome(item=item, error=e)

    else:

        async def run(item: T) -> BranchOutcome[T, R]:
            return BranchOutcome(item=item, result=await worker(item))

    if scheduling == "pool":
        return await run_pooled(items, run, limit)  # type: ignore[return-value]
    return await run_batched(items, run, limit)
