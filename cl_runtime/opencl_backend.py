"""OpenCL backend: pyopencl implementation of the ``Backend`` interface."""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np
import pyopencl as cl

from cl_runtime.backend import Backend, DeviceInfo, DeviceType, MemFlags
from cl_runtime.errors import (
    DEVICE_NOT_FOUND,
    INVALID_ARG_SIZE,
    INVALID_ARG_VALUE,
    INVALID_KERNEL_ARGS,
    INVALID_KERNEL_NAME,
    ComputeError,
)

# No ICD platform installed (cl_khr_icd).
_PLATFORM_NOT_FOUND_KHR = -1001

_DEVICE_INFO_ATTRS = {
    DeviceInfo.NAME: "name",
    DeviceInfo.VENDOR: "vendor",
    DeviceInfo.VERSION: "version",
    DeviceInfo.DRIVER_VERSION: "driver_version",
    DeviceInfo.TYPE: "type",
    DeviceInfo.EXTENSIONS: "extensions",
}


def _as_compute_error(err: cl.Error, message: str) -> ComputeError:
    code = getattr(err, "code", 0)
    return ComputeError(f"OpenCL error {code}: {message} ({err})", code)


class OpenCLBackend(Backend):
    """Backend that drives real devices through pyopencl."""

    @property
    def name(self) -> str:
        return "opencl"

    def get_platforms(self) -> list[Any]:
        try:
            return list(cl.get_platforms())
        except cl.Error as e:
            if getattr(e, "code", 0) == _PLATFORM_NOT_FOUND_KHR:
                return []
            raise _as_compute_error(e, "Could not obtain platform list!") from e

    def platform_name(self, platform) -> str:
        return platform.name.replace("\0", "")

    def platform_vendor(self, platform) -> str:
        return platform.vendor.replace("\0", "")

    def get_devices(self, platform, device_type: DeviceType = DeviceType.ALL) -> list[Any]:
        try:
            return list(platform.get_devices(device_type=int(device_type)))
        except cl.Error as e:
            # A platform without devices of this type is not an error
            if getattr(e, "code", 0) == DEVICE_NOT_FOUND:
                return []
            raise _as_compute_error(e, "Could not obtain device list!") from e

    def device_info(self, device, key: DeviceInfo) -> Any:
        try:
            value = getattr(device, _DEVICE_INFO_ATTRS[DeviceInfo(key)])
        except cl.Error as e:
            raise _as_compute_error(e, "Could not obtain device information!") from e
        if key == DeviceInfo.TYPE:
            return DeviceType(int(value))
        # Some drivers leave trailing NULs in info strings
        return value.replace("\0", "") if isinstance(value, str) else value

    def create_context(self, platform, device) -> Any:
        try:
            return cl.Context(
                devices=[device],
                properties=[(cl.context_properties.PLATFORM, platform)],
            )
        except cl.Error as e:
            raise _as_compute_error(e, "Could not spawn CL context!") from e

    def create_queue(self, context, device, out_of_order: bool = False) -> Any:
        props = cl.command_queue_properties.OUT_OF_ORDER_EXEC_MODE_ENABLE if out_of_order else 0
        try:
            return cl.CommandQueue(context, device, properties=props)
        except cl.Error as e:
            raise _as_compute_error(e, "Could not create command queue!") from e

    def finish(self, queue) -> None:
        try:
            queue.finish()
        except cl.Error as e:
            raise _as_compute_error(e, "Could not finish command queue!") from e

    def wait_for_events(self, events: Sequence[Any]) -> None:
        if events:
            cl.wait_for_events(list(events))

    def build_program(self, context, device, source: str, options: Sequence[str] = ()) -> tuple[Any | None, str]:
        program = cl.Program(context, source)
        try:
            program.build(options=list(options), devices=[device])
        except cl.Error as e:
            # pyopencl embeds the device build log in the error message
            return None, str(e)
        log = program.get_build_info(device, cl.program_build_info.LOG)
        return program, log.replace("\0", "") if isinstance(log, str) else ""

    def create_kernel(self, program, name: str) -> Any | None:
        try:
            return cl.Kernel(program, name)
        except cl.Error as e:
            if getattr(e, "code", 0) == INVALID_KERNEL_NAME:
                return None
            raise _as_compute_error(e, f"Could not create kernel object {name!r}!") from e

    def create_buffer(self, context, flags: MemFlags, nbytes: int, hostbuf: np.ndarray | None = None) -> Any:
        # OpenCL cannot allocate 0-byte buffers; use 1-byte placeholder
        size = max(nbytes, 1)
        try:
            if hostbuf is None:
                return cl.Buffer(context, int(flags), size=size)
            return cl.Buffer(context, int(flags), size=size, hostbuf=hostbuf)
        except cl.Error as e:
            raise _as_compute_error(e, "Could not create buffer object!") from e

    def enqueue_write(self, queue, buffer, data, offset_bytes=0, blocking=True, wait_for=None) -> Any:
        try:
            return cl.enqueue_copy(
                queue, buffer, data,
                dst_offset=offset_bytes, is_blocking=blocking, wait_for=wait_for,
            )
        except cl.Error as e:
            raise _as_compute_error(e, "Could not enqueue buffer write!") from e

    def enqueue_read(self, queue, out, buffer, offset_bytes=0, blocking=True, wait_for=None) -> Any:
        try:
            return cl.enqueue_copy(
                queue, out, buffer,
                src_offset=offset_bytes, is_blocking=blocking, wait_for=wait_for,
            )
        except cl.Error as e:
            raise _as_compute_error(e, "Could not enqueue buffer read!") from e

    def set_arg(self, kernel, index: int, value) -> int:
        try:
            kernel.set_arg(index, value)
        except cl.Error as e:
            return getattr(e, "code", INVALID_KERNEL_ARGS)
        except (TypeError, ValueError):
            # pyopencl rejects unsupported Python values before calling clSetKernelArg
            return INVALID_ARG_VALUE
        return 0

    def set_local_arg(self, kernel, index: int, nbytes: int) -> int:
        return self.set_arg(kernel, index, cl.LocalMemory(nbytes))

    def set_raw_arg(self, kernel, index: int, data, nbytes: int) -> int:
        try:
            span = memoryview(data).cast("B")
        except TypeError:
            return INVALID_ARG_VALUE
        if not 0 < nbytes <= span.nbytes:
            return INVALID_ARG_SIZE
        raw = np.frombuffer(span, dtype=np.uint8, count=nbytes)
        return self.set_arg(kernel, index, raw)

    def enqueue_nd_range(self, queue, kernel, global_size, local_size, offset=None, wait_for=None):
        try:
            event = cl.enqueue_nd_range_kernel(
                queue, kernel, global_size, local_size,
                global_work_offset=offset, wait_for=wait_for,
            )
        except cl.Error as e:
            return getattr(e, "code", INVALID_KERNEL_ARGS), None
        return 0, event
