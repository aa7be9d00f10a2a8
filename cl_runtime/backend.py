"""Abstract compute-API interfaces for the runtime.

Everything above this module (device contexts, arrays, kernel calls) talks to
the hardware only through ``Backend``. ``OpenCLBackend`` is the production
implementation; tests plug in an in-memory one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum, IntFlag
from typing import Any, Sequence

import numpy as np


class MemFlags(IntFlag):
    """Buffer allocation flags (values match ``cl_mem_flags``)."""
    READ_WRITE = 1 << 0
    WRITE_ONLY = 1 << 1
    READ_ONLY = 1 << 2
    USE_HOST_PTR = 1 << 3
    ALLOC_HOST_PTR = 1 << 4
    COPY_HOST_PTR = 1 << 5


class DeviceType(IntFlag):
    """Device classification (values match ``cl_device_type``)."""
    DEFAULT = 1 << 0
    CPU = 1 << 1
    GPU = 1 << 2
    ACCELERATOR = 1 << 3
    ALL = 0xFFFFFFFF


class DeviceInfo(str, Enum):
    NAME = "name"
    VENDOR = "vendor"
    VERSION = "version"
    DRIVER_VERSION = "driver_version"
    TYPE = "type"
    EXTENSIONS = "extensions"


class DeviceBuffer(ABC):
    """Device memory with numpy interop. Binds as a buffer kernel argument."""

    @property
    @abstractmethod
    def shape(self) -> tuple[int, ...]:
        ...

    @property
    @abstractmethod
    def dtype(self) -> np.dtype:
        ...

    @property
    @abstractmethod
    def size_bytes(self) -> int:
        ...

    @property
    @abstractmethod
    def native_handle(self) -> Any:
        """Backend-native buffer object (e.g. ``pyopencl.Buffer``)."""
        ...

    @abstractmethod
    def to_numpy(self) -> np.ndarray:
        ...


class Backend(ABC):
    """Abstract compute API.

    Configuration calls raise ``ComputeError``. The steady-state calls
    (``set_arg``, ``set_local_arg``, ``set_raw_arg``, ``enqueue_nd_range``)
    return a status code instead so that dispatch never raises.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    # ── enumeration ──

    @abstractmethod
    def get_platforms(self) -> list[Any]:
        ...

    @abstractmethod
    def platform_name(self, platform) -> str:
        ...

    @abstractmethod
    def platform_vendor(self, platform) -> str:
        ...

    @abstractmethod
    def get_devices(self, platform, device_type: DeviceType = DeviceType.ALL) -> list[Any]:
        """Devices of ``platform`` matching ``device_type``; empty if there are none."""
        ...

    @abstractmethod
    def device_info(self, device, key: DeviceInfo) -> Any:
        ...

    # ── contexts and queues ──

    @abstractmethod
    def create_context(self, platform, device) -> Any:
        ...

    @abstractmethod
    def create_queue(self, context, device, out_of_order: bool = False) -> Any:
        ...

    @abstractmethod
    def finish(self, queue) -> None:
        ...

    @abstractmethod
    def wait_for_events(self, events: Sequence[Any]) -> None:
        ...

    # ── programs and kernels ──

    @abstractmethod
    def build_program(self, context, device, source: str, options: Sequence[str] = ()) -> tuple[Any | None, str]:
        """Compile ``source`` for ``device``.

        Returns:
            ``(program, build_log)``; ``program`` is None when compilation failed.
        """
        ...

    @abstractmethod
    def create_kernel(self, program, name: str) -> Any | None:
        """Return the kernel ``name`` from ``program``, or None if it does not exist."""
        ...

    # ── memory ──

    @abstractmethod
    def create_buffer(self, context, flags: MemFlags, nbytes: int, hostbuf: np.ndarray | None = None) -> Any:
        ...

    @abstractmethod
    def enqueue_write(
        self,
        queue,
        buffer,
        data: np.ndarray,
        offset_bytes: int = 0,
        blocking: bool = True,
        wait_for: Sequence[Any] | None = None,
    ) -> Any:
        """Copy ``data`` into ``buffer`` at ``offset_bytes``. Returns the completion event."""
        ...

    @abstractmethod
    def enqueue_read(
        self,
        queue,
        out: np.ndarray,
        buffer,
        offset_bytes: int = 0,
        blocking: bool = True,
        wait_for: Sequence[Any] | None = None,
    ) -> Any:
        """Copy ``out.nbytes`` bytes of ``buffer`` starting at ``offset_bytes`` into ``out``."""
        ...

    # ── dispatch (status codes, never raise) ──

    @abstractmethod
    def set_arg(self, kernel, index: int, value) -> int:
        ...

    @abstractmethod
    def set_local_arg(self, kernel, index: int, nbytes: int) -> int:
        ...

    @abstractmethod
    def set_raw_arg(self, kernel, index: int, data, nbytes: int) -> int:
        ...

    @abstractmethod
    def enqueue_nd_range(
        self,
        queue,
        kernel,
        global_size: tuple[int, ...],
        local_size: tuple[int, ...],
        offset: tuple[int, ...] | None = None,
        wait_for: Sequence[Any] | None = None,
    ) -> tuple[int, Any | None]:
        ...
