"""Device context: one device's compute context, command queues and compile caches."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Sequence

import numpy as np

from cl_runtime.backend import Backend, DeviceInfo, DeviceType, MemFlags
from cl_runtime.config import DEFAULT_CONFIG, RuntimeConfig
from cl_runtime.errors import BuildError, KernelNotFoundError
from cl_runtime.kernel_call import KernelCall, as_ndrange, round_global_size
from cl_runtime.logging_config import get_logger

if TYPE_CHECKING:
    from cl_runtime.module import SourceModule

logger = get_logger(__name__)


def qualified_kernel_name(name: str, scope: str = "") -> str:
    """Key under which a kernel is cached: ``scope::name``, or ``name`` without scope."""
    return f"{scope}::{name}" if scope else name


class DeviceContext:
    """Wraps a device, its compute context, command queues and kernel caches.

    Programs are cached by program id and kernels by qualified name, so each
    program is compiled at most once and each kernel extracted at most once
    for the lifetime of the context.
    """

    def __init__(
        self,
        backend: Backend,
        platform,
        device,
        config: RuntimeConfig | None = None,
        context=None,
    ):
        self._backend = backend
        self._platform = platform
        self._device = device
        self._config = config or DEFAULT_CONFIG
        self._context = context if context is not None else backend.create_context(platform, device)
        self._queues: list[Any] = []
        self._kernels: dict[str, Any] = {}
        self._program_cache: dict[str, Any] = {}
        self._lock = threading.RLock()

        self._device_type = DeviceType(self._backend.device_info(device, DeviceInfo.TYPE))
        self.require_command_queues(self._config.default_queue_count)

    @classmethod
    def from_context(
        cls, backend: Backend, context, device, config: RuntimeConfig | None = None,
    ) -> DeviceContext:
        """Create a device context around an existing compute context."""
        return cls(backend, None, device, config=config, context=context)

    def __repr__(self) -> str:
        return f"DeviceContext({self.name!r}, queues={len(self._queues)}, kernels={len(self._kernels)})"

    # ── handles ──

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def platform(self):
        return self._platform

    @property
    def device(self):
        return self._device

    @property
    def context(self):
        return self._context

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    # ── device queries ──

    @property
    def name(self) -> str:
        return self._backend.device_info(self._device, DeviceInfo.NAME)

    @property
    def vendor(self) -> str:
        return self._backend.device_info(self._device, DeviceInfo.VENDOR)

    @property
    def version(self) -> str:
        """OpenCL version supported by the device."""
        return self._backend.device_info(self._device, DeviceInfo.VERSION)

    @property
    def driver_version(self) -> str:
        return self._backend.device_info(self._device, DeviceInfo.DRIVER_VERSION)

    @property
    def device_type(self) -> DeviceType:
        return self._device_type

    @property
    def is_cpu_device(self) -> bool:
        return self._device_type == DeviceType.CPU

    @property
    def is_gpu_device(self) -> bool:
        return self._device_type == DeviceType.GPU

    @property
    def extensions(self) -> list[str]:
        return self._backend.device_info(self._device, DeviceInfo.EXTENSIONS).split()

    def is_extension_supported(self, extension: str) -> bool:
        return extension in self.extensions

    # ── command queues ──

    @property
    def num_command_queues(self) -> int:
        return len(self._queues)

    def command_queue(self, index: int = 0):
        self._check_queue(index)
        return self._queues[index]

    def add_command_queue(self, out_of_order: bool = False) -> int:
        """Create a new command queue and return its index."""
        with self._lock:
            queue = self._backend.create_queue(self._context, self._device, out_of_order=out_of_order)
            self._queues.append(queue)
            index = len(self._queues) - 1
        logger.debug("%s: created %s command queue %d", self.name,
                     "out-of-order" if out_of_order else "in-order", index)
        return index

    def add_out_of_order_command_queue(self) -> int:
        return self.add_command_queue(out_of_order=True)

    def require_command_queues(self, count: int) -> None:
        """Ensure at least ``count`` queues exist, adding in-order queues as needed."""
        while self.num_command_queues < count:
            self.add_command_queue()

    def finish(self, queue: int = 0) -> None:
        """Block until every command enqueued on ``queue`` has completed."""
        self._backend.finish(self.command_queue(queue))

    def wait_for_events(self, events: Sequence[Any]) -> None:
        self._backend.wait_for_events(events)

    def _check_queue(self, index: int) -> None:
        if not 0 <= index < len(self._queues):
            raise IndexError(f"Command queue {index} out of range (have {len(self._queues)})")

    # ── programs and kernels ──

    @property
    def num_compiled_programs(self) -> int:
        return len(self._program_cache)

    def has_kernel(self, qualified_name: str) -> bool:
        return qualified_name in self._kernels

    def register_source(
        self,
        source: str,
        kernel_names: Sequence[str],
        program_id: str | None = None,
        scope: str = "",
    ) -> None:
        """Compile ``source`` on demand and cache the requested kernels.

        Args:
            source: Device source code.
            kernel_names: Kernels defined in ``source`` that should become available.
            program_id: Stable identifier of ``source`` used as the program cache key.
                Defaults to the concatenated kernel names.
            scope: If non-empty, kernels are registered as ``scope::name``.

        Raises:
            BuildError: compilation failed; the program cache gains no entry.
            KernelNotFoundError: a kernel name is not defined by the program.
        """
        if program_id is None:
            program_id = "".join(kernel_names)

        with self._lock:
            new_kernels = [
                name for name in kernel_names
                if qualified_kernel_name(name, scope) not in self._kernels
            ]
            if not new_kernels:
                return

            program = self._program_cache.get(program_id)
            if program is None:
                program = self._compile(source, program_id)
                self._program_cache[program_id] = program
            else:
                logger.debug("%s: program cache hit for %r", self.name, program_id)

            for name in new_kernels:
                kernel = self._backend.create_kernel(program, name)
                if kernel is None:
                    raise KernelNotFoundError(
                        f"{self.name}: kernel {name!r} not found in program {program_id!r}"
                    )
                key = qualified_kernel_name(name, scope)
                self._kernels[key] = kernel
                logger.debug("%s: extracted kernel %r", self.name, key)

    def register_source_file(self, path: str, kernel_names: Sequence[str], scope: str = "") -> None:
        """Read ``path`` and register it, using the path as program id."""
        with open(path) as f:
            source = f.read()
        self.register_source(source, kernel_names, program_id=path, scope=scope)

    def register_module(self, module: SourceModule, kernel_names: Sequence[str] | None = None) -> None:
        """Register a source module; its kernels live under ``module_id::name``."""
        names = list(kernel_names) if kernel_names is not None else list(module.entrypoints)
        self.register_source(module.compose(), names, program_id=module.module_id, scope=module.module_id)

    def get_kernel(self, qualified_name: str):
        kernel = self._kernels.get(qualified_name)
        if kernel is None:
            raise KernelNotFoundError(f"Requested kernel {qualified_name!r} could not be found!")
        return kernel

    def kernel_call(
        self,
        qualified_name: str,
        global_size: int | Sequence[int],
        local_size: int | Sequence[int],
        wait_for: Sequence[Any] | None = None,
        queue: int = 0,
    ) -> KernelCall:
        return KernelCall(self, self.get_kernel(qualified_name), global_size, local_size,
                          wait_for=wait_for, queue=queue)

    def _compile(self, source: str, program_id: str):
        logger.info("%s: compiling program %r", self.name, program_id)
        program, build_log = self._backend.build_program(
            self._context, self._device, source, self._config.build_options,
        )
        if program is None:
            logger.error("%s: build of %r failed", self.name, program_id)
            raise BuildError(self.name, build_log)
        return program

    # ── buffers ──

    def create_buffer(
        self,
        dtype,
        count: int,
        initial_data: np.ndarray | None = None,
        flags: MemFlags = MemFlags.READ_WRITE,
    ):
        """Allocate device memory for ``count`` elements of ``dtype``.

        On CPU devices a zero-copy allocation is attempted: the buffer is backed
        by host memory, so ``initial_data`` must stay alive as long as the buffer.
        Other devices get a device-private allocation with ``initial_data``
        copied in at creation.
        """
        nbytes = np.dtype(dtype).itemsize * count
        hostbuf = None
        if initial_data is not None:
            hostbuf = np.ascontiguousarray(initial_data, dtype=dtype)
            if hostbuf.size < count:
                raise ValueError(f"initial_data has {hostbuf.size} elements, need {count}")

        if self._config.zero_copy_on_cpu and self.is_cpu_device:
            flags |= MemFlags.ALLOC_HOST_PTR if hostbuf is None else MemFlags.USE_HOST_PTR
        elif hostbuf is not None:
            flags |= MemFlags.COPY_HOST_PTR

        return self._backend.create_buffer(self._context, flags, nbytes, hostbuf)

    def create_input_buffer(self, dtype, count: int, initial_data: np.ndarray | None = None):
        """Buffer that is read-only for kernels."""
        return self.create_buffer(dtype, count, initial_data, MemFlags.READ_ONLY)

    def create_output_buffer(self, dtype, count: int, initial_data: np.ndarray | None = None):
        """Buffer that is write-only for kernels."""
        return self.create_buffer(dtype, count, initial_data, MemFlags.WRITE_ONLY)

    # ── transfers ──
    # Offsets and ranges are in elements of the host array's dtype.

    def memcpy_h2d(self, buffer, data: np.ndarray, begin: int = 0, end: int | None = None,
                   queue: int = 0) -> None:
        """Copy host ``data`` into ``buffer[begin:end]`` and wait for completion."""
        self._write(buffer, data, begin, end, True, None, queue)

    def memcpy_h2d_async(self, buffer, data: np.ndarray, begin: int = 0, end: int | None = None,
                         wait_for: Sequence[Any] | None = None, queue: int = 0):
        """Enqueue a host-to-device copy. ``data`` must stay alive until the event completes."""
        return self._write(buffer, data, begin, end, False, wait_for, queue)

    def memcpy_d2h(self, out: np.ndarray, buffer, begin: int = 0, end: int | None = None,
                   queue: int = 0) -> np.ndarray:
        """Copy ``buffer[begin:end]`` into ``out`` and wait for completion."""
        self._read(out, buffer, begin, end, True, None, queue)
        return out

    def memcpy_d2h_async(self, out: np.ndarray, buffer, begin: int = 0, end: int | None = None,
                         wait_for: Sequence[Any] | None = None, queue: int = 0):
        """Enqueue a device-to-host copy into ``out``; returns the completion event."""
        return self._read(out, buffer, begin, end, False, wait_for, queue)

    def _write(self, buffer, data, begin, end, blocking, wait_for, queue):
        host = np.ascontiguousarray(data).reshape(-1)
        end = begin + host.size if end is None else end
        count = self._check_range(begin, end, host.size)
        return self._backend.enqueue_write(
            self.command_queue(queue), buffer, host[:count],
            offset_bytes=begin * host.itemsize, blocking=blocking, wait_for=wait_for,
        )

    def _read(self, out, buffer, begin, end, blocking, wait_for, queue):
        if not out.flags.c_contiguous:
            raise ValueError("Output array must be C-contiguous")
        host = out.reshape(-1)
        end = begin + host.size if end is None else end
        count = self._check_range(begin, end, host.size)
        return self._backend.enqueue_read(
            self.command_queue(queue), host[:count], buffer,
            offset_bytes=begin * host.itemsize, blocking=blocking, wait_for=wait_for,
        )

    @staticmethod
    def _check_range(begin: int, end: int, available: int) -> int:
        if begin < 0 or end <= begin:
            raise ValueError(f"Invalid transfer range [{begin}, {end})")
        count = end - begin
        if count > available:
            raise ValueError(f"Transfer of {count} elements exceeds host array of {available}")
        return count

    # ── dispatch ──

    def enqueue_kernel(
        self,
        kernel,
        global_size: int | Sequence[int],
        local_size: int | Sequence[int],
        offset: Sequence[int] | None = None,
        wait_for: Sequence[Any] | None = None,
        queue: int = 0,
    ) -> tuple[int, Any | None]:
        """Enqueue ``kernel`` with the global size rounded up to the local size.

        Returns:
            ``(status, event)``; ``event`` is None if the enqueue failed.
        """
        queue_handle = self.command_queue(queue)
        local = as_ndrange(local_size)
        rounded = round_global_size(global_size, local)
        if offset is not None:
            offset = tuple(offset)
            if len(offset) != len(rounded):
                raise ValueError(f"Offset {offset} does not match dimensionality of {rounded}")
        return self._backend.enqueue_nd_range(
            queue_handle, kernel, rounded, local, offset=offset, wait_for=wait_for,
        )
