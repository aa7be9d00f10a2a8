"""Profiler: measure kernel launch time."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Sequence

from cl_runtime.errors import check_status
from cl_runtime.kernel_call import KernelCall


@dataclass
class ProfileResult:
    """Profiling result with timing and iteration count."""
    total_ms: float
    iterations: int


def profile(
    call: KernelCall,
    args: Sequence = (),
    warmup: int = 3,
    iterations: int = 10,
) -> ProfileResult:
    """Profile a kernel call.

    Runs warmup launches then measures the average time of a launch followed
    by a drain of the call's queue.
    """
    ctx = call.context

    def run():
        check_status(call(*args), "Could not enqueue kernel!")
        ctx.finish(call.queue)

    for _ in range(warmup):
        run()

    start = time.perf_counter()
    for _ in range(iterations):
        run()
    end = time.perf_counter()

    total_ms = (end - start) / iterations * 1000 if iterations else 0.0

    return ProfileResult(
        total_ms=total_ms,
        iterations=iterations,
    )
