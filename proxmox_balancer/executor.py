# executor.py

"""Bounded-parallelism executor shared by every collection stage."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Optional, TypeVar

from .config import MAX_CONCURRENT_FETCHES

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[str, int, int], None]


def run_bounded(
    items: Iterable[T],
    work: Callable[[T], R],
    on_result: Callable[[T, Optional[R], Optional[Exception]], None],
    stage: str = "",
    progress: Optional[ProgressCallback] = None,
    max_workers: int = MAX_CONCURRENT_FETCHES,
) -> int:
    """
    Run ``work`` over ``items`` on a bounded worker pool.

    Workers only compute; ``on_result`` is always invoked from the calling
    thread, one result at a time, so it may update shared state without locks.
    A failing item is handed to ``on_result`` with its exception and the
    remaining items keep running.

    Args:
        items: Work items, all submitted before any result is consumed
        work: Per-item function executed on a worker thread
        on_result: Handler called as on_result(item, result, error)
        stage: Stage name reported to ``progress``
        progress: Optional callback(stage, completed, total)
        max_workers: Worker cap, further capped by the number of items

    Returns:
        Number of items whose work raised an exception
    """
    items = list(items)
    total = len(items)
    if total == 0:
        return 0

    if progress:
        progress(stage, 0, total)

    failures = 0
    completed = 0
    workers = max(1, min(max_workers, total))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="collector") as pool:
        futures = {pool.submit(work, item): item for item in items}
        for future in as_completed(futures):
            item = futures[future]
            completed += 1
            error = future.exception()
            if error is not None:
                failures += 1
                on_result(item, None, error)
            else:
                on_result(item, future.result(), None)
            if progress:
                progress(stage, completed, total)

    if failures:
        logger.debug(f"{stage or 'stage'}: {failures}/{total} items failed")
    return failures
