"""Tests for the device bitonic sort, run against the simulated backend."""

import asyncio
import importlib.util
import sys
import threading

import pytest
import torch

from gpu_sorting import (
    BufferAllocationError,
    CommandQueueUnavailableError,
    DeviceSorter,
    KernelUnavailableError,
    NoDeviceError,
    PipelineBuildError,
    SimulatedBackend,
    SortError,
    device_sort,
    device_sort_async,
    probe_device,
)
from gpu_sorting.backends import KERNEL_NAME, Barrier, Dispatch, bitonic_step_reference, default_backend
from gpu_sorting.device import bitonic_schedule, from_keys, next_power_of_two, to_keys


# -----------------------------------------------------------
# helpers

@pytest.mark.parametrize("n,expected", [(0, 1), (1, 1), (2, 2), (3, 4), (1000, 1024), (1024, 1024), (1025, 2048)])
def test_next_power_of_two(n, expected):
    assert next_power_of_two(n) == expected


def test_schedule_for_eight():
    assert list(bitonic_schedule(8)) == [(2, 1), (4, 2), (4, 1), (8, 4), (8, 2), (8, 1)]


def test_schedule_length():
    # log2(M) * (log2(M) + 1) / 2 passes
    assert len(list(bitonic_schedule(1024))) == 55
    assert list(bitonic_schedule(1)) == []


def test_keys_keep_unsigned_order():
    keys = to_keys([0, 1, 2 ** 31, 0xFFFFFFFF])
    assert keys.dtype == torch.int32
    assert keys.tolist() == [-2 ** 31, -2 ** 31 + 1, 0, 2 ** 31 - 1]
    assert from_keys(keys) == [0, 1, 2 ** 31, 0xFFFFFFFF]


def test_reference_step_orients_runs():
    data = torch.tensor([3, 1, 1, 3], dtype=torch.int32)
    bitonic_step_reference(data, 2, 1)
    # first pair ascending, second pair descending
    assert data.tolist() == [1, 3, 3, 1]


def test_reference_step_keeps_equal_pairs():
    data = torch.tensor([5, 5, 5, 5], dtype=torch.int32)
    bitonic_step_reference(data, 2, 1)
    assert data.tolist() == [5, 5, 5, 5]


def test_encode_separates_every_dispatch_with_a_barrier(sorter, backend):
    buffer = backend.allocate(16)
    try:
        commands = sorter.encode(buffer)
    finally:
        buffer.release()

    dispatches = commands.commands[0::2]
    barriers = commands.commands[1::2]
    assert all(isinstance(c, Dispatch) for c in dispatches)
    assert all(isinstance(c, Barrier) for c in barriers)
    assert len(dispatches) == len(barriers) == commands.dispatch_count == 10
    assert [(c.stage, c.pass_) for c in dispatches] == list(bitonic_schedule(16))


# -----------------------------------------------------------
# sorting

def test_small_example(sorter):
    values, elapsed = sorter.sort([5, 3, 3, 1])
    assert values == [1, 3, 3, 5]
    assert elapsed >= 0.0


def test_empty_input(sorter, backend):
    assert sorter.sort([]) == ([], 0.0)
    assert backend.live_buffers == 0


def test_single_element(sorter):
    assert sorter.sort([7]).values == [7]


def test_padded_input(sorter, backend, make_input):
    values = make_input(1000)
    result, elapsed = sorter.sort(values)
    assert len(result) == 1000
    assert result == sorted(values)
    assert isinstance(elapsed, float)
    assert backend.live_buffers == 0


@pytest.mark.parametrize("size", [2, 3, 7, 8, 9, 255, 1024, 1025, 4096, 25_000])
def test_matches_sequential_sort(sorter, make_input, size):
    values = make_input(size, seed=size)
    assert sorter.sort(values).values == sorted(values)


def test_sentinel_values_in_input_survive(sorter):
    values = [0xFFFFFFFF, 3, 0xFFFFFFFF, 0, 3]
    result = sorter.sort(values).values
    assert result == [0, 3, 3, 0xFFFFFFFF, 0xFFFFFFFF]


def test_sorted_and_reversed_inputs(sorter):
    ascending = list(range(0, 3000, 3))
    assert sorter.sort(ascending).values == ascending
    assert sorter.sort(ascending[::-1]).values == ascending


def test_tensor_input(sorter):
    values = torch.tensor([9, 0xFFFFFFFE, 4, 4, 0], dtype=torch.int64)
    assert sorter.sort(values).values == [0, 4, 4, 9, 0xFFFFFFFE]


def test_sorter_is_reusable(sorter, make_input):
    for seed in range(3):
        values = make_input(300, seed=seed)
        assert sorter.sort(values).values == sorted(values)


def test_async_sort(backend, make_input):
    values = make_input(777)

    async def main():
        with DeviceSorter(backend) as s:
            return await s.sort_async(values)

    result, elapsed = asyncio.run(main())
    assert result == sorted(values)
    assert elapsed >= 0.0
    assert backend.live_buffers == 0


def test_cancelled_async_sort_keeps_buffer_until_device_finishes():
    started = threading.Event()
    gate = threading.Event()

    def slow_step(data, stage, pass_):
        started.set()
        gate.wait(5)
        bitonic_step_reference(data, stage, pass_)

    backend = SimulatedBackend(library={KERNEL_NAME: slow_step})
    sorter = DeviceSorter(backend)

    async def main():
        task = asyncio.create_task(sorter.sort_async([3, 1, 2]))
        await asyncio.get_running_loop().run_in_executor(None, started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    try:
        asyncio.run(main())
        # the queue is still running the command buffer
        assert backend.live_buffers == 1
    finally:
        gate.set()
        sorter.close()
    assert backend.live_buffers == 0


def test_module_level_helpers(backend):
    assert device_sort([5, 3, 3, 1], backend=backend).values == [1, 3, 3, 5]
    assert asyncio.run(device_sort_async([2, 1], backend=backend)).values == [1, 2]


def test_simulated_device_from_environment(monkeypatch):
    monkeypatch.setenv("GPU_SORT_DEVICE", "simulated")
    assert device_sort([3, 2, 1]).values == [1, 2, 3]


# -----------------------------------------------------------
# failures

def test_no_device(monkeypatch):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
    probe = probe_device("cuda")
    assert not probe.available
    assert "CUDA" in probe.reason

    with pytest.raises(NoDeviceError):
        default_backend("cuda")
    with pytest.raises(NoDeviceError):
        device_sort([5, 3, 3, 1])


def test_cuda_without_triton(monkeypatch):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: True)
    monkeypatch.setattr(torch.cuda, "get_device_name", lambda *args: "Fake GPU")
    monkeypatch.setitem(sys.modules, "triton", None)
    monkeypatch.delitem(sys.modules, "gpu_sorting.triton_backend", raising=False)
    monkeypatch.delitem(sys.modules, "gpu_sorting.kernels", raising=False)

    found = probe_device("cuda")
    assert not found.available
    assert "triton" in found.reason

    with pytest.raises(NoDeviceError):
        default_backend("cuda")
    with pytest.raises(NoDeviceError):
        device_sort([5, 3, 3, 1])


def test_cuda_backend_import_failure(monkeypatch):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: True)
    monkeypatch.setattr(torch.cuda, "get_device_name", lambda *args: "Fake GPU")
    monkeypatch.setattr(importlib.util, "find_spec", lambda name, *args: object())
    monkeypatch.setitem(sys.modules, "gpu_sorting.triton_backend", None)

    with pytest.raises(NoDeviceError, match="cannot be loaded"):
        default_backend("cuda")


def test_unknown_device_kind():
    assert not probe_device("tpu").available
    with pytest.raises(NoDeviceError):
        default_backend("tpu")


def test_command_queue_unavailable():
    class NoQueueBackend(SimulatedBackend):
        def make_command_queue(self):
            raise CommandQueueUnavailableError("queue limit reached")

    with pytest.raises(CommandQueueUnavailableError):
        DeviceSorter(NoQueueBackend())


def test_kernel_unavailable():
    with pytest.raises(KernelUnavailableError):
        DeviceSorter(SimulatedBackend(library={}))


def test_pipeline_build_failure():
    with pytest.raises(PipelineBuildError):
        DeviceSorter(SimulatedBackend(library={KERNEL_NAME: "not a kernel"}))


def test_buffer_allocation_failure(make_input):
    backend = SimulatedBackend(max_elements=512)
    with DeviceSorter(backend) as s:
        assert s.sort(make_input(512)).values == sorted(make_input(512))
        # 513 elements pad to 1024
        with pytest.raises(BufferAllocationError):
            s.sort(make_input(513))
    assert backend.live_buffers == 0


def test_errors_share_a_base_class():
    for error in (NoDeviceError, CommandQueueUnavailableError, KernelUnavailableError,
                  PipelineBuildError, BufferAllocationError):
        assert issubclass(error, SortError)


def test_kernel_failure_propagates_and_releases_buffer():
    def broken(data, stage, pass_):
        raise RuntimeError("device fault")

    backend = SimulatedBackend(library={KERNEL_NAME: broken})
    with DeviceSorter(backend) as s:
        with pytest.raises(RuntimeError, match="device fault"):
            s.sort([3, 1, 2])
    assert backend.live_buffers == 0
