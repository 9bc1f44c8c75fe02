"""
Shared fixtures for the gpu_sorting tests.

Device tests run on the simulated backend, so no accelerator is needed.
"""

import pytest

from gpu_sorting import DeviceSorter, SimulatedBackend
from gpu_sorting.benchmark import random_input


@pytest.fixture
def backend():
    """A fresh software device."""
    return SimulatedBackend()


@pytest.fixture
def sorter(backend):
    """A device sorter bound to the simulated backend."""
    with DeviceSorter(backend) as s:
        yield s


@pytest.fixture
def make_input():
    """Deterministic random u32 values of a given size."""
    def _make(size, seed=0):
        return random_input(size, seed=seed)
    return _make


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep engine configuration independent of the caller's environment."""
    for name in (
        "GPU_SORT_MIN_CHUNK",
        "GPU_SORT_DEPTH",
        "GPU_SORT_WORKERS",
        "GPU_SORT_DEVICE",
        "GPU_SORT_BLOCK_SIZE",
        "GPU_SORT_MAX_ELEMENTS",
    ):
        monkeypatch.delenv(name, raising=False)
