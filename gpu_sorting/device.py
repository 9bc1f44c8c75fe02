'''
Bitonic sort orchestrated against a compute device.

The input is padded with 0xFFFFFFFF to the next power of two M, and a fixed
network of compare-exchange passes is recorded into one command buffer:

    for stage in 2, 4, ..., M:
        for pass_ in stage / 2, stage / 4, ..., 1:
            dispatch(stage, pass_) over M threads
            memory_barrier()

Each pass depends on the full completion of the previous one, so the order of
the dispatches and the barriers between them must be kept exactly.
'''

import asyncio
import logging
import time
from concurrent.futures import Future
from typing import Iterator, List, NamedTuple, Optional, Tuple

import torch

from .backends import KERNEL_NAME, CommandBuffer, ComputeBackend, WorkBuffer, default_backend

logger = logging.getLogger(__name__)

SENTINEL = 0xFFFFFFFF
# u32 -> i32 shift that keeps the ordering
KEY_OFFSET = 2 ** 31


class DeviceSortResult(NamedTuple):
    values: List[int]
    elapsed: float


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


def bitonic_schedule(m: int) -> Iterator[Tuple[int, int]]:
    """(stage, pass_) of every dispatch of the network over `m` elements."""
    stage = 2
    while stage <= m:
        pass_ = stage >> 1
        while pass_ > 0:
            yield stage, pass_
            pass_ >>= 1
        stage <<= 1


def to_keys(values) -> torch.Tensor:
    if isinstance(values, torch.Tensor):
        wide = values.reshape(-1).to(torch.int64)
    else:
        wide = torch.tensor(list(values), dtype=torch.int64)
    return (wide - KEY_OFFSET).to(torch.int32)


def from_keys(keys: torch.Tensor) -> List[int]:
    return (keys.to(torch.int64) + KEY_OFFSET).tolist()


class DeviceSorter:
    """
    Sorts u32 sequences with a bitonic network on a compute device.

    Construction acquires the device, a command queue, the kernel and its
    pipeline; each step fails with its own SortError subclass. A sorter keeps
    no state between calls besides those handles.

    Args:
        backend: compute backend to run on. Defaults to the device selected
            by GPU_SORT_DEVICE.
    """

    def __init__(self, backend: Optional[ComputeBackend] = None):
        self.backend = default_backend() if backend is None else backend
        self.queue = self.backend.make_command_queue()
        try:
            kernel = self.backend.find_kernel(KERNEL_NAME)
            self.pipeline = self.backend.build_pipeline(kernel)
        except Exception:
            self.queue.close()
            raise

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self.queue.close()

    def sort(self, values) -> DeviceSortResult:
        keys = to_keys(values)
        n = keys.numel()
        if n == 0:
            return DeviceSortResult([], 0.0)
        buffer, completion, started = self._submit(keys)
        try:
            # the buffer belongs to the device until the completion fires
            finished = completion.result()
            return self._read_back(buffer, n, finished - started)
        finally:
            buffer.release()

    async def sort_async(self, values) -> DeviceSortResult:
        keys = to_keys(values)
        n = keys.numel()
        if n == 0:
            return DeviceSortResult([], 0.0)
        buffer, completion, started = self._submit(keys)
        try:
            finished = await asyncio.wrap_future(completion)
        except BaseException:
            # cancelled or failed: the buffer goes back only once the device is done with it
            completion.add_done_callback(lambda _: buffer.release())
            raise
        try:
            return self._read_back(buffer, n, finished - started)
        finally:
            buffer.release()

    def _submit(self, keys: torch.Tensor) -> Tuple[WorkBuffer, "Future[float]", float]:
        n = keys.numel()
        m = next_power_of_two(n)
        buffer = self.backend.allocate(m)
        try:
            buffer.data[:n].copy_(keys)
            buffer.data[n:].fill_(SENTINEL - KEY_OFFSET)

            commands = self.encode(buffer)
            logger.debug("bitonic sort of %d elements padded to %d, %d dispatches",
                         n, m, commands.dispatch_count)

            started = time.perf_counter()
            completion = self.queue.submit(commands)
        except Exception:
            buffer.release()
            raise
        return buffer, completion, started

    def encode(self, buffer: WorkBuffer) -> CommandBuffer:
        commands = CommandBuffer(self.pipeline, buffer)
        for stage, pass_ in bitonic_schedule(len(buffer)):
            commands.dispatch(stage, pass_)
            commands.memory_barrier()
        return commands

    def _read_back(self, buffer: WorkBuffer, n: int, elapsed: float) -> DeviceSortResult:
        logger.debug("device window %.6f s", elapsed)
        return DeviceSortResult(from_keys(buffer.data[:n].cpu()), elapsed)


def device_sort(values, backend: Optional[ComputeBackend] = None) -> DeviceSortResult:
    with DeviceSorter(backend) as sorter:
        return sorter.sort(values)


async def device_sort_async(values, backend: Optional[ComputeBackend] = None) -> DeviceSortResult:
    with DeviceSorter(backend) as sorter:
        return await sorter.sort_async(values)
