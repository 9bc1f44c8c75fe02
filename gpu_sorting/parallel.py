'''
Fork-join merge sort across host workers.

The input is halved recursively, each half sorted concurrently with half of the
remaining fan-out depth, and the two sorted halves merged back. Below
MIN_CHUNK elements, or once the depth is used up, a slice is sorted
sequentially instead.
'''

import logging
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import List, Optional, Sequence

from .config import SortConfig

logger = logging.getLogger(__name__)


def as_list(values) -> List[int]:
    # tensors, numpy arrays and array.array all expose tolist()
    if hasattr(values, "tolist"):
        return values.tolist()
    return list(values)


def sequential_sort(values) -> List[int]:
    return sorted(as_list(values))


def merge(left: Sequence[int], right: Sequence[int]) -> List[int]:
    """Merge two ascending runs; on ties the left element goes first."""
    merged = []
    i = 0
    j = 0
    n_left = len(left)
    n_right = len(right)

    while i < n_left and j < n_right:
        if left[i] <= right[j]:
            merged.append(left[i])
            i += 1
        else:
            merged.append(right[j])
            j += 1

    merged.extend(left[i:])
    merged.extend(right[j:])
    return merged


class ParallelMergeSorter:
    """
    Merge sort that fans out over the available hardware threads.

    Each fork gets its own pair of threads and joins on both before merging,
    so only the forking task blocks. Leaf sorts and merges run on a worker
    pool that lives for a single `sort` call.

    Args:
        min_chunk: slices at or below this length are sorted sequentially.
        depth: initial fan-out depth, halved at every fork.
        workers: "process" or "thread" worker pool.
    """

    def __init__(self, min_chunk: Optional[int] = None, depth: Optional[int] = None,
                 workers: Optional[str] = None):
        config = SortConfig.from_env()
        self.min_chunk = config.min_chunk if min_chunk is None else min_chunk
        self.depth = config.depth if depth is None else depth
        self.workers = config.workers if workers is None else workers
        if self.workers not in ("process", "thread"):
            raise ValueError(f"unknown worker pool {self.workers!r}")

    def sort(self, values) -> List[int]:
        data = as_list(values)
        if len(data) <= self.min_chunk or self.depth <= 1:
            return self._sort(None, data, self.depth)

        logger.debug("parallel sort of %d elements, depth %d, %s workers",
                     len(data), self.depth, self.workers)
        with self._make_pool() as pool:
            return self._sort(pool, data, self.depth)

    def _make_pool(self) -> Executor:
        if self.workers == "process":
            return ProcessPoolExecutor(max_workers=self.depth)
        return ThreadPoolExecutor(max_workers=self.depth, thread_name_prefix="sort-worker")

    def _sort(self, pool: Optional[Executor], values: List[int], depth: int) -> List[int]:
        n = len(values)
        if n <= 1:
            return values
        if n <= self.min_chunk or depth <= 1:
            if pool is None:
                return sorted(values)
            return pool.submit(sorted, values).result()

        mid = n // 2
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sort-fork") as forks:
            left = forks.submit(self._sort, pool, values[:mid], depth // 2)
            right = forks.submit(self._sort, pool, values[mid:], depth // 2)
            left_sorted = left.result()
            right_sorted = right.result()
        return pool.submit(merge, left_sorted, right_sorted).result()


def parallel_sort(values, **kwargs) -> List[int]:
    return ParallelMergeSorter(**kwargs).sort(values)
