"""Kernel invocation: argument binding plus launch-geometry rounding."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

import numpy as np

from cl_runtime.arguments import KernelArgumentList
from cl_runtime.errors import SUCCESS

if TYPE_CHECKING:
    from cl_runtime.device import DeviceContext


def as_ndrange(size: int | Sequence[int]) -> tuple[int, ...]:
    if isinstance(size, (int, np.integer)):
        return (int(size),)
    return tuple(int(s) for s in size)


def round_global_size(
    minimum: int | Sequence[int], local: int | Sequence[int],
) -> tuple[int, ...]:
    """Round each dimension of ``minimum`` up to a multiple of ``local``.

    Work-groups are always fully populated, so up to ``local - 1`` extra
    work-items per dimension are launched. Kernels must bounds-check their
    global id.
    """
    minimum, local = as_ndrange(minimum), as_ndrange(local)
    if len(minimum) != len(local):
        raise ValueError(f"Dimensionality mismatch: global {minimum} vs local {local}")
    rounded = []
    for work_items, group in zip(minimum, local):
        if group <= 0:
            raise ValueError(f"Local work size must be positive, got {local}")
        rounded.append(((work_items + group - 1) // group) * group)
    return tuple(rounded)


class KernelCall:
    """A kernel bound to a device context and a launch geometry.

    Calling the object binds the arguments to slots 0..n-1 in order, enqueues
    the kernel and returns the status code. The completion event of the most
    recent launch is available as ``event``; it is None when that call failed
    to bind or enqueue.
    """

    def __init__(
        self,
        ctx: DeviceContext,
        kernel,
        global_size: int | Sequence[int],
        local_size: int | Sequence[int],
        wait_for: Sequence[Any] | None = None,
        queue: int = 0,
        offset: Sequence[int] | None = None,
    ):
        self._ctx = ctx
        self._kernel = kernel
        self._args = KernelArgumentList(ctx.backend, kernel)
        self._global_size = as_ndrange(global_size)
        self._local_size = as_ndrange(local_size)
        if len(self._global_size) != len(self._local_size):
            raise ValueError(
                f"Dimensionality mismatch: global {self._global_size} vs local {self._local_size}"
            )
        self._wait_for = wait_for
        self._queue = queue
        self._offset = offset
        self.event = None

    @property
    def context(self) -> DeviceContext:
        return self._ctx

    @property
    def kernel(self):
        return self._kernel

    @property
    def queue(self) -> int:
        return self._queue

    @property
    def global_size(self) -> tuple[int, ...]:
        """Global size actually dispatched (rounded to the local size)."""
        return round_global_size(self._global_size, self._local_size)

    @property
    def num_pushed_arguments(self) -> int:
        return self._args.num_pushed

    def set_dependencies(self, wait_for: Sequence[Any] | None) -> None:
        self._wait_for = wait_for

    def __call__(self, *args) -> int:
        self.event = None
        self._args.reset()
        try:
            status = self._bind(args)
            if status != SUCCESS:
                return status
            return self.enqueue()
        finally:
            self._args.reset()

    def partial_argument_list(self, *args) -> int:
        """Bind ``args`` after the ones already bound, without launching."""
        return self._bind(args)

    def discard_partial_arguments(self) -> None:
        self._args.reset()

    def enqueue(self) -> int:
        status, event = self._ctx.enqueue_kernel(
            self._kernel,
            self._global_size,
            self._local_size,
            offset=self._offset,
            wait_for=self._wait_for,
            queue=self._queue,
        )
        self.event = event
        return status

    def _bind(self, args) -> int:
        # All arguments are bound even after a failure; the first error wins
        result = SUCCESS
        for arg in args:
            status = self._args.push(arg)
            if result == SUCCESS and status != SUCCESS:
                result = status
        return result
