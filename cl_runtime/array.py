"""Device array: typed, fixed-length device buffer with position iterators."""

from __future__ import annotations

import functools
from typing import Any, Sequence

import numpy as np

from cl_runtime.backend import DeviceBuffer
from cl_runtime.device import DeviceContext


@functools.total_ordering
class ArrayIterator:
    """A position inside a ``DeviceArray``.

    Pure address used to slice transfer ranges; it never touches data.
    Ranges are validated by the array operation that consumes them.
    Iterators of different arrays are unordered.
    """

    __slots__ = ("_array", "_pos")

    def __init__(self, array: DeviceArray, position: int):
        self._array = array
        self._pos = position

    @property
    def array(self) -> DeviceArray:
        return self._array

    @property
    def position(self) -> int:
        return self._pos

    def __add__(self, n: int) -> ArrayIterator:
        if not isinstance(n, (int, np.integer)):
            return NotImplemented
        return ArrayIterator(self._array, self._pos + int(n))

    __radd__ = __add__

    def __sub__(self, other):
        if isinstance(other, ArrayIterator):
            return self._pos - other._pos
        if isinstance(other, (int, np.integer)):
            return ArrayIterator(self._array, self._pos - int(other))
        return NotImplemented

    def __eq__(self, other) -> bool:
        if not isinstance(other, ArrayIterator):
            return NotImplemented
        return self._array is other._array and self._pos == other._pos

    def __lt__(self, other) -> bool:
        if not isinstance(other, ArrayIterator) or other._array is not self._array:
            return NotImplemented
        return self._pos < other._pos

    def __hash__(self) -> int:
        return hash((id(self._array), self._pos))

    def __repr__(self) -> str:
        return f"ArrayIterator(pos={self._pos}, size={len(self._array)})"


class DeviceArray(DeviceBuffer):
    """Fixed-length device buffer of ``size`` elements of ``dtype``.

    Holds a reference to its ``DeviceContext`` and owns the wrapped buffer
    handle; the device allocation is released when the last reference to the
    handle goes away.
    """

    def __init__(self, ctx: DeviceContext, buffer, size: int, dtype=np.float32):
        self._ctx = ctx
        self._buffer = buffer
        self._size = size
        self._dtype = np.dtype(dtype)

    @staticmethod
    def from_numpy(data: np.ndarray, ctx: DeviceContext, queue: int = 0) -> DeviceArray:
        """Allocate an array matching ``data`` (flattened) and upload it."""
        host = np.ascontiguousarray(data).reshape(-1)
        if host.size == 0:
            raise ValueError("Cannot create a device array from empty data")
        array = DeviceArray.empty(host.size, ctx, host.dtype)
        array.write(host, queue=queue)
        return array

    @staticmethod
    def empty(size: int, ctx: DeviceContext, dtype=np.float32) -> DeviceArray:
        """Allocate an uninitialized array."""
        dtype = np.dtype(dtype)
        return DeviceArray(ctx, ctx.create_buffer(dtype, size), size, dtype)

    # ── DeviceBuffer ──

    @property
    def shape(self) -> tuple[int, ...]:
        return (self._size,)

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def size_bytes(self) -> int:
        return self._size * self._dtype.itemsize

    @property
    def native_handle(self):
        return self._buffer

    def to_numpy(self) -> np.ndarray:
        return self.read()

    # ── accessors ──

    @property
    def size(self) -> int:
        return self._size

    def __len__(self) -> int:
        return self._size

    @property
    def buffer(self):
        return self._buffer

    @property
    def context(self) -> DeviceContext:
        return self._ctx

    def begin(self) -> ArrayIterator:
        return ArrayIterator(self, 0)

    def end(self) -> ArrayIterator:
        return ArrayIterator(self, self._size)

    # ── reads ──

    def read(self, out: np.ndarray | None = None, queue: int = 0) -> np.ndarray:
        """Read the whole array. Allocates ``out`` if not given."""
        if out is None:
            out = np.empty(self._size, dtype=self._dtype)
        self.read_range(out, self.begin(), self.end(), queue=queue)
        return out

    def read_async(self, out: np.ndarray, wait_for: Sequence[Any] | None = None, queue: int = 0):
        """Enqueue a read of the whole array into ``out``; returns the event."""
        return self.read_range_async(out, self.begin(), self.end(), wait_for=wait_for, queue=queue)

    def read_range(self, out: np.ndarray, begin: ArrayIterator, end: ArrayIterator, queue: int = 0) -> np.ndarray:
        """Read elements ``[begin, end)`` into the first ``end - begin`` slots of ``out``."""
        count = self._check_range(begin, end, out)
        if count:
            self._ctx.memcpy_d2h(out, self._buffer, begin.position, end.position, queue=queue)
        return out

    def read_range_async(self, out: np.ndarray, begin: ArrayIterator, end: ArrayIterator,
                         wait_for: Sequence[Any] | None = None, queue: int = 0):
        count = self._check_range(begin, end, out)
        if not count:
            return None
        return self._ctx.memcpy_d2h_async(out, self._buffer, begin.position, end.position,
                                          wait_for=wait_for, queue=queue)

    # ── writes ──

    def write(self, data: np.ndarray, queue: int = 0) -> None:
        """Write ``data`` to the front of the array (``len(data) <= size``)."""
        host = self._host(data, whole=True)
        self.write_range(host, self.begin(), self.begin() + host.size, queue=queue)

    def write_async(self, data: np.ndarray, wait_for: Sequence[Any] | None = None, queue: int = 0):
        """Enqueue a write of ``data``; ``data`` must stay alive until the event completes."""
        host = self._host(data, whole=True)
        return self.write_range_async(host, self.begin(), self.begin() + host.size,
                                      wait_for=wait_for, queue=queue)

    def write_range(self, data: np.ndarray, begin: ArrayIterator, end: ArrayIterator, queue: int = 0) -> None:
        """Write the first ``end - begin`` elements of ``data`` to ``[begin, end)``."""
        host = self._host(data)
        count = self._check_range(begin, end, host)
        if count:
            self._ctx.memcpy_h2d(self._buffer, host, begin.position, end.position, queue=queue)

    def write_range_async(self, data: np.ndarray, begin: ArrayIterator, end: ArrayIterator,
                          wait_for: Sequence[Any] | None = None, queue: int = 0):
        host = self._host(data)
        count = self._check_range(begin, end, host)
        if not count:
            return None
        return self._ctx.memcpy_h2d_async(self._buffer, host, begin.position, end.position,
                                          wait_for=wait_for, queue=queue)

    # ── helpers ──

    def _host(self, data, whole: bool = False) -> np.ndarray:
        src = np.asarray(data)
        if not np.can_cast(src.dtype, self._dtype, casting="same_kind"):
            raise ValueError(f"Cannot write {src.dtype} data to device array of {self._dtype}")
        host = np.ascontiguousarray(src, dtype=self._dtype).reshape(-1)
        if whole and host.size > self._size:
            raise ValueError(f"{host.size} elements do not fit into device array of size {self._size}")
        return host

    def _check_range(self, begin: ArrayIterator, end: ArrayIterator, host: np.ndarray) -> int:
        if begin.array is not self or end.array is not self:
            raise ValueError("Iterators do not belong to this device array")
        if not 0 <= begin.position <= end.position <= self._size:
            raise IndexError(f"Range [{begin.position}, {end.position}) outside [0, {self._size})")
        count = end.position - begin.position
        if count > host.size:
            raise ValueError(f"Host array has {host.size} elements, range needs {count}")
        if host.dtype != self._dtype:
            raise ValueError(f"Host dtype {host.dtype} does not match device dtype {self._dtype}")
        return count
