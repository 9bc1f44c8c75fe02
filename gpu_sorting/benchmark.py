'''
Benchmark harness: times the sequential, parallel and device sorts on the same
random input and checks that all of them agree.

    gpu-sort-bench --size 2000000
    python -m gpu_sorting.benchmark --device simulated --size 100000
'''

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from typing import List, Optional

import torch

from .backends import default_backend
from .device import DeviceSorter
from .errors import SortError
from .parallel import ParallelMergeSorter, sequential_sort

logger = logging.getLogger(__name__)


def random_input(size: int, seed: Optional[int] = None) -> List[int]:
    generator = torch.Generator()
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(seed)
    return torch.randint(0, 2 ** 32, (size,), dtype=torch.int64, generator=generator).tolist()


def outputs_match(baseline: List[int], *outputs: List[int]) -> bool:
    return all(output == baseline for output in outputs)


@dataclass
class BenchmarkReport:
    size: int
    sequential_time: float
    parallel_time: float
    device_time: Optional[float] = None
    device_error: Optional[str] = None
    outputs_match: bool = False

    @property
    def parallel_speedup(self) -> float:
        return self.sequential_time / self.parallel_time if self.parallel_time else float("inf")

    @property
    def device_speedup(self) -> Optional[float]:
        if self.device_time is None:
            return None
        return self.sequential_time / self.device_time if self.device_time else float("inf")

    @property
    def status(self) -> str:
        if self.device_time is not None:
            correctness = "Outputs match" if self.outputs_match else "Mismatch!"
            return (f"Done. GPU {self.device_speedup:.1f}x vs parallel CPU "
                    f"{self.parallel_speedup:.1f}x. {correctness}")
        if self.device_error is not None:
            return self.device_error
        return "CPU complete. GPU unavailable."


def run_benchmark(values: List[int], parallel: Optional[ParallelMergeSorter] = None,
                  device: Optional[DeviceSorter] = None, use_device: bool = True) -> BenchmarkReport:
    """
    Sort `values` with every engine and compare each result to the baseline.

    When `device` is None a DeviceSorter is created here; if that fails, the
    device leg is skipped and the reason lands in `device_error`.
    """
    start = time.perf_counter()
    expected = sequential_sort(values)
    sequential_time = time.perf_counter() - start

    parallel = ParallelMergeSorter() if parallel is None else parallel
    start = time.perf_counter()
    parallel_sorted = parallel.sort(values)
    parallel_time = time.perf_counter() - start

    report = BenchmarkReport(
        size=len(values),
        sequential_time=sequential_time,
        parallel_time=parallel_time,
        outputs_match=outputs_match(expected, parallel_sorted),
    )
    if not use_device:
        return report

    owns_device = device is None
    if owns_device:
        try:
            device = DeviceSorter()
        except SortError as exc:
            logger.warning("device sort skipped: %s", exc)
            report.device_error = f"GPU not available: {type(exc).__name__}: {exc}"
            return report

    try:
        device_sorted, report.device_time = device.sort(values)
    except SortError as exc:
        logger.warning("device sort failed: %s", exc)
        report.device_error = f"GPU sort failed: {type(exc).__name__}: {exc}"
        return report
    finally:
        if owns_device:
            device.close()

    report.outputs_match = outputs_match(expected, parallel_sorted, device_sorted)
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="sequential vs parallel vs device sort of u32 values")
    parser.add_argument("--size", type=int, default=2_000_000, help="number of elements")
    parser.add_argument("--seed", type=int, default=None, help="seed of the random input")
    parser.add_argument("--device", choices=["cuda", "simulated"], default=None, help="device backend")
    parser.add_argument("--workers", choices=["process", "thread"], default=None, help="host worker pool")
    parser.add_argument("--no-device", action="store_true", help="skip the device sort")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(name)s %(levelname)s %(message)s")

    print(f"Generating {args.size:,} elements...")
    values = random_input(args.size, args.seed)

    device = None
    if not args.no_device:
        try:
            device = DeviceSorter(default_backend(args.device))
        except SortError as exc:
            print(f"GPU not available: {exc}")

    try:
        report = run_benchmark(values, ParallelMergeSorter(workers=args.workers),
                               device=device, use_device=device is not None)
    finally:
        if device is not None:
            device.close()

    print(f"CPU sorted():   {report.sequential_time:.3f} s")
    print(f"CPU parallel:   {report.parallel_time:.3f} s")
    if report.device_time is not None:
        print(f"GPU bitonic:    {report.device_time:.3f} s")
    print(f"Status: {report.status}")
    return 0 if report.outputs_match else 1


if __name__ == "__main__":
    sys.exit(main())
