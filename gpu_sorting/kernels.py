'''
Device side of the bitonic network: one compare-exchange pass per launch.

Keys are int32 (`value - 2**31`), so signed comparison orders them the same
way as the original unsigned values.
'''

import triton
import triton.language as tl

from .backends import KERNEL_NAME


@triton.jit
def bitonic_sort_step(buf_ptr, n, stage, pass_, BLOCK_SIZE: tl.constexpr):
    """
    For each index i, compare with i ^ pass_ and swap when the pair is out of
    order for its run. Runs are ascending where bit `stage` of i is clear.

    Only the lower index of a pair acts, so every pair is written once.
    Equal keys are left where they are.
    """
    pid = tl.program_id(axis=0)
    idx = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)

    partner = idx ^ pass_
    do_pair = (idx < n) & (partner < n) & (partner > idx)

    a = tl.load(buf_ptr + idx, mask=do_pair, other=0)
    b = tl.load(buf_ptr + partner, mask=do_pair, other=0)

    ascending = (idx & stage) == 0
    swap = tl.where(ascending, a > b, a < b)
    write = do_pair & swap

    tl.store(buf_ptr + idx, b, mask=write)
    tl.store(buf_ptr + partner, a, mask=write)


# kernel library of the CUDA device, looked up by entry point name
LIBRARY = {
    KERNEL_NAME: bitonic_sort_step,
}
