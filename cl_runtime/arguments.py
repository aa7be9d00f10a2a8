"""Kernel argument kinds and the sequential argument binder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from cl_runtime.backend import Backend, DeviceBuffer


@dataclass(frozen=True)
class LocalMemory:
    """Request for ``count`` elements of work-group local scratch memory.

    Bound as a null pointer with a byte size, so the device allocates the
    memory for the duration of the launch. Nothing is copied from the host.
    """
    dtype: np.dtype
    count: int

    @property
    def nbytes(self) -> int:
        return np.dtype(self.dtype).itemsize * self.count


@dataclass(frozen=True)
class RawMemory:
    """Host memory bound by value with an explicit byte size."""
    data: Any
    nbytes: int


class KernelArgumentList:
    """Binds arguments to consecutive slots of one kernel.

    Every ``push`` consumes exactly one slot, whether or not binding
    succeeded, and returns the backend status code.
    """

    def __init__(self, backend: Backend, kernel):
        if kernel is None:
            raise ValueError("kernel must not be None")
        self._backend = backend
        self._kernel = kernel
        self._num_arguments = 0

    @property
    def kernel(self):
        return self._kernel

    @property
    def num_pushed(self) -> int:
        """Number of arguments bound since the last reset."""
        return self._num_arguments

    def push(self, arg) -> int:
        index = self._num_arguments
        if isinstance(arg, LocalMemory):
            status = self._backend.set_local_arg(self._kernel, index, arg.nbytes)
        elif isinstance(arg, RawMemory):
            status = self._backend.set_raw_arg(self._kernel, index, arg.data, arg.nbytes)
        elif isinstance(arg, DeviceBuffer):
            status = self._backend.set_arg(self._kernel, index, arg.native_handle)
        else:
            status = self._backend.set_arg(self._kernel, index, arg)
        self._num_arguments += 1
        return status

    def reset(self) -> None:
        self._num_arguments = 0
