"""
Bounded async worker pool.

Runs a coroutine per item with at most `concurrency` in flight and
returns results in input order. A failing item becomes None and never
aborts its siblings.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from deep_research.core.exceptions import RunCancelledError
from deep_research.core.logging import get_logger
from deep_research.services.cancellation import CancellationToken

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_pool(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
    token: Optional[CancellationToken] = None,
    label: str = "pool",
) -> List[Optional[R]]:
    """
    Apply `worker` to every item with bounded concurrency.

    min(concurrency, len(items)) runners each pull the next unclaimed index
    until the list is exhausted. Once the token is cancelled no new item is
    started; items already running finish through their own checks.

    Args:
        items: Inputs, processed in index order
        worker: Async function applied to each item
        concurrency: Maximum simultaneous workers (must be >= 1)
        token: Optional cancellation token
        label: Name used in log lines

    Returns:
        List aligned with `items`; None where the worker failed or never ran
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    results: List[Optional[R]] = [None] * len(items)
    if not items:
        return results

    next_index = 0

    async def runner() -> None:
        nonlocal next_index
        while next_index < len(items):
            if token is not None and token.cancelled:
                return
            index = next_index
            next_index += 1
            try:
                results[index] = await worker(items[index])
            except RunCancelledError:
                logger.debug(f"{label}: item {index} stopped by cancellation")
            except Exception as e:
                logger.warning(f"{label}: item {index} failed: {type(e).__name__}: {e}")

    await asyncio.gather(*(runner() for _ in range(min(concurrency, len(items)))))
    return results
