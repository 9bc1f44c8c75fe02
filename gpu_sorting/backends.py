'''
Minimal compute-backend abstraction for the device sort.

A backend hands out a command queue, looks kernels up by name, builds a
pipeline from a kernel and allocates work buffers. Work is recorded into a
CommandBuffer as an ordered list of dispatches and memory barriers, then
submitted to the queue, which executes it on its own thread and resolves a
future when the device is done.

SimulatedBackend runs the same contract on torch CPU tensors, so the
orchestration can be exercised without an accelerator.
'''

import abc
import importlib.util
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Union

import torch

from .config import SortConfig
from .errors import (
    BufferAllocationError,
    KernelUnavailableError,
    NoDeviceError,
    PipelineBuildError,
)

logger = logging.getLogger(__name__)

# kernel symbol shared by every backend: (buffer, stage, pass_)
KERNEL_NAME = "bitonic_sort_step"


@dataclass(frozen=True)
class Dispatch:
    stage: int
    pass_: int


@dataclass(frozen=True)
class Barrier:
    pass


Command = Union[Dispatch, Barrier]


@dataclass(frozen=True)
class Pipeline:
    """An executable kernel: `launch(data, stage, pass_)` runs one dispatch."""
    name: str
    launch: Callable[[torch.Tensor, int, int], None]
    threads_per_group: int = 1


class WorkBuffer:
    """A 1-D tensor of int32 keys owned by exactly one sort call."""

    def __init__(self, data: torch.Tensor, on_release: Optional[Callable[[], None]] = None):
        self.data = data
        self._on_release = on_release

    def __len__(self):
        return 0 if self.data is None else self.data.numel()

    @property
    def released(self) -> bool:
        return self.data is None

    def release(self):
        if self.data is None:
            return
        self.data = None
        if self._on_release is not None:
            self._on_release()


@dataclass
class CommandBuffer:
    pipeline: Pipeline
    buffer: WorkBuffer
    commands: List[Command] = field(default_factory=list)

    def dispatch(self, stage: int, pass_: int):
        self.commands.append(Dispatch(stage, pass_))

    def memory_barrier(self):
        self.commands.append(Barrier())

    @property
    def dispatch_count(self) -> int:
        return sum(1 for c in self.commands if isinstance(c, Dispatch))


class CommandQueue(abc.ABC):
    """
    In-order submission queue backed by a single worker thread.

    `submit` returns immediately; the future resolves to the
    `time.perf_counter()` value taken the moment execution finished, or carries
    the exception raised while executing.
    """

    def __init__(self, name: str):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def submit(self, commands: CommandBuffer) -> "Future[float]":
        return self._executor.submit(self._run, commands)

    def _run(self, commands: CommandBuffer) -> float:
        self.execute(commands)
        return time.perf_counter()

    @abc.abstractmethod
    def execute(self, commands: CommandBuffer):
        """Run every command and block until the device has finished."""

    def close(self):
        self._executor.shutdown(wait=True)


class ComputeBackend(abc.ABC):
    name = "abstract"

    @abc.abstractmethod
    def make_command_queue(self) -> CommandQueue:
        ...

    @abc.abstractmethod
    def find_kernel(self, name: str):
        ...

    @abc.abstractmethod
    def build_pipeline(self, kernel) -> Pipeline:
        ...

    @abc.abstractmethod
    def allocate(self, length: int) -> WorkBuffer:
        ...


# -----------------------------------------------------------
# software device

def bitonic_step_reference(data: torch.Tensor, stage: int, pass_: int):
    """One bitonic compare-exchange pass over `data`, all threads at once."""
    idx = torch.arange(data.numel(), device=data.device)
    partner = idx ^ pass_
    # each pair is handled by its lower index only
    active = partner > idx
    lo = idx[active]
    hi = partner[active]

    a = data[lo]
    b = data[hi]
    ascending = (lo & stage) == 0
    swap = torch.where(ascending, a > b, a < b)

    data[lo] = torch.where(swap, b, a)
    data[hi] = torch.where(swap, a, b)


class SimulatedQueue(CommandQueue):

    def __init__(self):
        super().__init__("simulated-queue")

    def execute(self, commands: CommandBuffer):
        data = commands.buffer.data
        for command in commands.commands:
            if isinstance(command, Dispatch):
                commands.pipeline.launch(data, command.stage, command.pass_)
            # dispatches run to completion one after another, a barrier has nothing to wait for


class SimulatedBackend(ComputeBackend):
    """
    Software device on torch CPU tensors.

    Args:
        library: kernel name -> kernel callable. Defaults to the reference
            bitonic step under KERNEL_NAME.
        max_elements: largest work buffer the device will hand out.
    """

    name = "simulated"

    def __init__(self, library: Optional[Mapping[str, Callable]] = None,
                 max_elements: Optional[int] = None):
        self.library: Dict[str, Callable] = dict(
            {KERNEL_NAME: bitonic_step_reference} if library is None else library)
        self.max_elements = max_elements
        self.live_buffers = 0

    def make_command_queue(self) -> CommandQueue:
        return SimulatedQueue()

    def find_kernel(self, name: str):
        try:
            return self.library[name]
        except KeyError:
            raise KernelUnavailableError(f"kernel {name!r} not found in simulated library") from None

    def build_pipeline(self, kernel) -> Pipeline:
        if not callable(kernel):
            raise PipelineBuildError(f"kernel {kernel!r} is not executable")
        return Pipeline(name=getattr(kernel, "__name__", KERNEL_NAME), launch=kernel)

    def allocate(self, length: int) -> WorkBuffer:
        if self.max_elements is not None and length > self.max_elements:
            raise BufferAllocationError(
                f"{length} elements exceed the simulated device limit of {self.max_elements}")
        try:
            data = torch.empty(length, dtype=torch.int32)
        except RuntimeError as exc:
            raise BufferAllocationError(f"could not allocate {length} elements") from exc
        self.live_buffers += 1
        return WorkBuffer(data, on_release=self._released)

    def _released(self):
        self.live_buffers -= 1


# -----------------------------------------------------------
# capability probe

@dataclass(frozen=True)
class DeviceProbe:
    available: bool
    kind: str
    reason: str = ""


def probe_device(kind: Optional[str] = None) -> DeviceProbe:
    kind = SortConfig.from_env().device if kind is None else kind
    if kind == "simulated":
        return DeviceProbe(True, kind)
    if kind != "cuda":
        return DeviceProbe(False, kind, f"unknown device kind {kind!r}")
    if not torch.cuda.is_available():
        return DeviceProbe(False, kind, "no CUDA device available")
    if importlib.util.find_spec("triton") is None:
        return DeviceProbe(False, kind, "triton is not installed")
    return DeviceProbe(True, kind, torch.cuda.get_device_name())


def default_backend(kind: Optional[str] = None) -> ComputeBackend:
    config = SortConfig.from_env()
    probe = probe_device(kind)
    if not probe.available:
        raise NoDeviceError(probe.reason)

    logger.debug("using %s device %s", probe.kind, probe.reason)
    if probe.kind == "simulated":
        return SimulatedBackend(max_elements=config.max_elements)

    try:
        from .triton_backend import TritonBackend
    except ImportError as exc:
        raise NoDeviceError(f"CUDA backend cannot be loaded: {exc}") from exc
    return TritonBackend(block_size=config.block_size, max_elements=config.max_elements)
