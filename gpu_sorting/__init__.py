'''
gpu_sorting: u32 sorting on the host (fork-join merge sort) and on a compute
device (bitonic network).

    from gpu_sorting import parallel_sort, device_sort
    parallel_sort([5, 3, 3, 1])           # [1, 3, 3, 5]
    values, seconds = device_sort([5, 3, 3, 1])
'''

from .backends import ComputeBackend, DeviceProbe, SimulatedBackend, default_backend, probe_device
from .config import SortConfig
from .device import DeviceSorter, DeviceSortResult, device_sort, device_sort_async
from .errors import (
    BufferAllocationError,
    CommandQueueUnavailableError,
    KernelUnavailableError,
    NoDeviceError,
    PipelineBuildError,
    SortError,
)
from .parallel import ParallelMergeSorter, merge, parallel_sort, sequential_sort

__version__ = "0.1.0"

__all__ = [
    "BufferAllocationError",
    "CommandQueueUnavailableError",
    "ComputeBackend",
    "DeviceProbe",
    "DeviceSortResult",
    "DeviceSorter",
    "KernelUnavailableError",
    "NoDeviceError",
    "ParallelMergeSorter",
    "PipelineBuildError",
    "SimulatedBackend",
    "SortConfig",
    "SortError",
    "default_backend",
    "device_sort",
    "device_sort_async",
    "merge",
    "parallel_sort",
    "probe_device",
    "sequential_sort",
]
