'''
Failures of the device bitonic engine.

Every failure is fatal for the call that hit it: no retry, no partial output.
'''


class SortError(Exception):
    """Base class for device sort failures."""


class NoDeviceError(SortError):
    """No compute device could be acquired."""


class CommandQueueUnavailableError(SortError):
    """The device refused to hand out a command queue."""


class KernelUnavailableError(SortError):
    """The compute entry point is missing from the kernel library."""


class PipelineBuildError(SortError):
    """The entry point could not be turned into an executable pipeline."""


class BufferAllocationError(SortError):
    """The shared work buffer could not be allocated."""
