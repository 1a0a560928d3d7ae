"""
Blocked parallel-for over a fixed thread pool.

Both the optimizer update and the two gradient phases work the same way:
split an index range into contiguous blocks, hand one block to each worker,
and wait for all of them before moving on. Writes are confined to each
worker's own block, so the shared numpy buffers need no locking.

Usage:
    from maxent_gd.parallel import WorkerPool

    with WorkerPool(threads=4) as pool:
        flags = pool.map_blocks(update_block, len(x))
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Default worker count when the caller does not pick one
DEFAULT_NUM_WORKERS = os.cpu_count() or 1


def partition(n: int, parts: int) -> list[tuple[int, int]]:
    """
    Split ``[0, n)`` into ``parts`` contiguous blocks of ``ceil(n / parts)``.

    The last non-empty block may be short, and when ``parts`` exceeds what is
    needed the trailing blocks are empty (``start == end``). Exactly ``parts``
    blocks are always returned.

    Args:
        n: Length of the range to split.
        parts: Number of blocks.

    Returns:
        List of ``(start, end)`` pairs in ascending order.
    """
    if parts < 1:
        raise ValueError(f"Number of blocks must be at least 1, got {parts}")
    if n < 0:
        raise ValueError(f"Range length must be non-negative, got {n}")

    size = math.ceil(n / parts)
    blocks = []
    for i in range(parts):
        start = min(i * size, n)
        end = min((i + 1) * size, n)
        blocks.append((start, end))
    return blocks


class WorkerPool:
    """
    Fixed-size pool executing a partitioned loop with a collective barrier.

    Args:
        threads: Number of workers (and blocks per ``map_blocks`` call).
    """

    def __init__(self, threads: int = DEFAULT_NUM_WORKERS):
        if threads < 1:
            raise ValueError(f"Worker pool needs at least one thread, got {threads}")
        self.threads = threads
        self._closed = False
        # A single worker runs inline in the calling thread
        self._executor: ThreadPoolExecutor | None = (
            ThreadPoolExecutor(max_workers=threads, thread_name_prefix="maxent-gd")
            if threads > 1
            else None
        )
        LOGGER.debug("Started worker pool with %d thread(s)", threads)

    def __enter__(self) -> WorkerPool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Shut the workers down and wait for them to exit."""
        if self._closed:
            return
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        LOGGER.debug("Stopped worker pool")

    def map_blocks(self, fn: Callable[[int, int], T], n: int) -> list[T]:
        """
        Run ``fn(start, end)`` on every block of ``[0, n)`` and wait for all.

        Every worker receives a block, possibly empty, so every worker takes
        part in the barrier. The first exception raised by a block is
        re-raised here once all blocks have finished.

        Returns:
            The per-block results, in block order.
        """
        if self._closed:
            raise RuntimeError("Worker pool has been closed")

        blocks = partition(n, self.threads)
        if self._executor is None:
            return [fn(start, end) for start, end in blocks]

        futures = [self._executor.submit(fn, start, end) for start, end in blocks]
        # Barrier: collect every result before surfacing any failure
        errors = [future.exception() for future in futures]
        for error in errors:
            if error is not None:
                raise error
        return [future.result() for future in futures]


__all__ = [
    "DEFAULT_NUM_WORKERS",
    "WorkerPool",
    "partition",
]
