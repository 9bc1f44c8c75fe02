'''
CUDA device for the bitonic sort: torch owns memory and streams, Triton
provides the compare-exchange kernel.

    python -m gpu_sorting.triton_backend

checks the result against torch.sort and runs a throughput sweep.
'''

import logging
from typing import Optional

import torch
import triton
import triton.testing

from .backends import CommandBuffer, CommandQueue, ComputeBackend, Dispatch, KERNEL_NAME, Pipeline, WorkBuffer
from .config import BLOCK_SIZE
from .errors import (
    BufferAllocationError,
    CommandQueueUnavailableError,
    KernelUnavailableError,
    NoDeviceError,
    PipelineBuildError,
)
from .kernels import LIBRARY

logger = logging.getLogger(__name__)


class TritonQueue(CommandQueue):

    def __init__(self, device: torch.device):
        self.device = device
        self.stream = torch.cuda.Stream(device=device)
        super().__init__("cuda-queue")

    def execute(self, commands: CommandBuffer):
        data = commands.buffer.data
        # the upload was issued on the default stream
        self.stream.wait_stream(torch.cuda.default_stream(self.device))
        data.record_stream(self.stream)
        with torch.cuda.stream(self.stream):
            for command in commands.commands:
                if isinstance(command, Dispatch):
                    commands.pipeline.launch(data, command.stage, command.pass_)
                # launches on one stream never overlap, stream order is the barrier
        self.stream.synchronize()


class TritonBackend(ComputeBackend):
    name = "cuda"

    def __init__(self, device=None, block_size: int = BLOCK_SIZE,
                 max_elements: Optional[int] = None, library=None):
        if not torch.cuda.is_available():
            raise NoDeviceError("no CUDA device available")
        if device is None:
            device = torch.device("cuda", torch.cuda.current_device())
        self.device = torch.device(device)
        self.block_size = block_size
        self.max_elements = max_elements
        self.library = LIBRARY if library is None else library

    def make_command_queue(self) -> CommandQueue:
        try:
            return TritonQueue(self.device)
        except RuntimeError as exc:
            raise CommandQueueUnavailableError(f"cannot create a stream on {self.device}") from exc

    def find_kernel(self, name: str):
        try:
            return self.library[name]
        except KeyError:
            raise KernelUnavailableError(f"kernel {name!r} not found in the Triton library") from None

    def build_pipeline(self, kernel) -> Pipeline:
        block = self.block_size
        if block < 1 or block & (block - 1):
            raise PipelineBuildError(f"block size must be a power of two, got {block}")
        if not isinstance(kernel, triton.JITFunction):
            raise PipelineBuildError(f"{kernel!r} is not a Triton kernel")

        def launch(data: torch.Tensor, stage: int, pass_: int):
            n = data.numel()
            grid = (triton.cdiv(n, block),)
            kernel[grid](data, n, stage, pass_, BLOCK_SIZE=block)

        return Pipeline(name=getattr(kernel, "__name__", KERNEL_NAME), launch=launch, threads_per_group=block)

    def allocate(self, length: int) -> WorkBuffer:
        if self.max_elements is not None and length > self.max_elements:
            raise BufferAllocationError(f"{length} elements exceed the configured limit of {self.max_elements}")
        try:
            data = torch.empty(length, dtype=torch.int32, device=self.device)
        except torch.cuda.OutOfMemoryError as exc:
            raise BufferAllocationError(f"out of device memory for {length} elements") from exc
        logger.debug("allocated %d keys on %s", length, self.device)
        return WorkBuffer(data)


# -----------------------------------------------------------

def run():
    from .device import DeviceSorter

    N = 1_000_003  # not a power of two, exercises the padding
    x = torch.randint(0, 2 ** 32, (N,), dtype=torch.int64, device='cuda')

    with DeviceSorter(TritonBackend()) as sorter:
        output, elapsed = sorter.sort(x)
    expected = torch.sort(x).values.tolist()

    print("Verifying results...")
    is_correct = output == expected
    print(f"Are the results correct? {'✅ Yes' if is_correct else '❌ No'}")
    print(f"device window: {elapsed * 1e3:.3f} ms")
    print(f"first 10: {output[:10]}")


@triton.testing.perf_report(
    triton.testing.Benchmark(
        x_names=['size'],
        x_vals=[2 ** i for i in range(12, 24, 1)],
        x_log=True,
        line_arg='provider',
        line_vals=['triton', 'torch'],
        line_names=['Triton (Bitonic)', 'Torch'],
        styles=[('blue', '-'), ('green', '-')],
        ylabel='GB/s',
        plot_name='bitonic-sort-performance',
        args={},
    ))
def benchmark(size, provider):
    from .device import DeviceSorter

    x = torch.randint(0, 2 ** 32, (size,), dtype=torch.int64, device='cuda')
    quantiles = [0.5, 0.2, 0.8]
    if provider == 'torch':
        ms, min_ms, max_ms = triton.testing.do_bench(lambda: torch.sort(x).values.tolist(), quantiles=quantiles)
    if provider == 'triton':
        with DeviceSorter(TritonBackend()) as sorter:
            ms, min_ms, max_ms = triton.testing.do_bench(lambda: sorter.sort(x), quantiles=quantiles)
    # u32 payload read and written once
    gbps = lambda ms: 2 * x.numel() * 4 / ms * 1e-6
    return gbps(ms), gbps(max_ms), gbps(min_ms)


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    run()
    print("================= performance ==================")
    benchmark.run(print_data=True, show_plots=False)
