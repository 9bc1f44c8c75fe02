'''
Environment-driven knobs for both sort engines.

    GPU_SORT_MIN_CHUNK      sequential cut-off of the merge engine (20000)
    GPU_SORT_DEPTH          initial fan-out depth (cpu count)
    GPU_SORT_WORKERS        "process" or "thread" worker pool
    GPU_SORT_DEVICE         "cuda" or "simulated"
    GPU_SORT_BLOCK_SIZE     threads per group of a kernel launch (1024)
    GPU_SORT_MAX_ELEMENTS   cap on the device work buffer (unset)
'''

import os
from dataclasses import dataclass
from typing import Optional

MIN_CHUNK = 20_000
BLOCK_SIZE = 1024

WORKER_KINDS = ("process", "thread")
DEVICE_KINDS = ("cuda", "simulated")


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _choice_env(name: str, default: str, choices) -> str:
    value = os.getenv(name, default).strip().lower() or default
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


@dataclass(frozen=True)
class SortConfig:
    min_chunk: int = MIN_CHUNK
    depth: int = 1
    workers: str = "process"
    device: str = "cuda"
    block_size: int = BLOCK_SIZE
    max_elements: Optional[int] = None

    @classmethod
    def from_env(cls) -> "SortConfig":
        return cls(
            min_chunk=_int_env("GPU_SORT_MIN_CHUNK", MIN_CHUNK),
            depth=_int_env("GPU_SORT_DEPTH", os.cpu_count() or 1),
            workers=_choice_env("GPU_SORT_WORKERS", "process", WORKER_KINDS),
            device=_choice_env("GPU_SORT_DEVICE", "cuda", DEVICE_KINDS),
            block_size=_int_env("GPU_SORT_BLOCK_SIZE", BLOCK_SIZE),
            max_elements=_int_env("GPU_SORT_MAX_ELEMENTS", None),
        )
