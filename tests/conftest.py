"""Shared fixtures and an in-memory backend for cl_runtime tests.

``FakeBackend`` implements the full ``Backend`` interface on host memory.
Kernels are Python callables registered by name; a program "defines" every
``__kernel void <name>(`` found in its source. Compilation fails when the
source contains ``#error`` or the device was created with ``fail_build``.
"""

import re
from dataclasses import dataclass, field

import numpy as np
import pytest

from cl_runtime.backend import Backend, DeviceInfo, DeviceType
from cl_runtime.device import DeviceContext
from cl_runtime.errors import INVALID_ARG_SIZE, INVALID_VALUE, ComputeError

_KERNEL_DECL = re.compile(r"__kernel\s+void\s+(\w+)\s*\(")

INVALID_WORK_GROUP_SIZE = -54


@dataclass
class FakePlatform:
    name: str
    vendor: str
    devices: list = field(default_factory=list)


@dataclass
class FakeDevice:
    name: str
    device_type: DeviceType = DeviceType.GPU
    vendor: str = "Fake Vendor"
    extensions: str = "cl_khr_fp64 cl_khr_int64_base_atomics"
    fail_build: bool = False


@dataclass
class FakeQueue:
    out_of_order: bool
    finish_count: int = 0


@dataclass
class FakeEvent:
    completed: bool = True


@dataclass
class FakeProgram:
    source: str
    kernel_names: list


@dataclass
class FakeKernel:
    name: str
    fn: object
    args: dict = field(default_factory=dict)


class FakeBuffer:
    def __init__(self, flags, nbytes, hostbuf=None):
        self.flags = flags
        self.nbytes = nbytes
        self.data = np.zeros(max(nbytes, 1), dtype=np.uint8)
        if hostbuf is not None:
            raw = np.ascontiguousarray(hostbuf).reshape(-1).view(np.uint8)
            self.data[: min(raw.size, nbytes)] = raw[:nbytes]

    def view(self, dtype):
        return self.data[: self.nbytes].view(dtype)


class FakeBackend(Backend):
    def __init__(self, kernels=None, platforms=None):
        self.kernels = dict(kernels or {})
        self.platforms = platforms if platforms is not None else []
        self.compile_count = 0
        self.compiled_sources = []
        self.buffers = []
        self.writes = []
        self.reads = []
        self.launches = []
        self.fail_set_arg_at = None
        self.fail_enqueue = False

    @property
    def name(self):
        return "fake"

    def get_platforms(self):
        return list(self.platforms)

    def platform_name(self, platform):
        return platform.name

    def platform_vendor(self, platform):
        return platform.vendor

    def get_devices(self, platform, device_type=DeviceType.ALL):
        return [d for d in platform.devices if d.device_type & device_type]

    def device_info(self, device, key):
        return {
            DeviceInfo.NAME: device.name,
            DeviceInfo.VENDOR: device.vendor,
            DeviceInfo.VERSION: "OpenCL 1.2 fake",
            DeviceInfo.DRIVER_VERSION: "1.0",
            DeviceInfo.TYPE: device.device_type,
            DeviceInfo.EXTENSIONS: device.extensions,
        }[DeviceInfo(key)]

    def create_context(self, platform, device):
        return ("context", device.name)

    def create_queue(self, context, device, out_of_order=False):
        return FakeQueue(out_of_order)

    def finish(self, queue):
        queue.finish_count += 1

    def wait_for_events(self, events):
        pass

    def build_program(self, context, device, source, options=()):
        self.compile_count += 1
        self.compiled_sources.append(source)
        if device.fail_build or "#error" in source:
            return None, "error: forced build failure"
        return FakeProgram(source, _KERNEL_DECL.findall(source)), ""

    def create_kernel(self, program, name):
        if name not in program.kernel_names:
            return None
        return FakeKernel(name, self.kernels.get(name))

    def create_buffer(self, context, flags, nbytes, hostbuf=None):
        buf = FakeBuffer(flags, nbytes, hostbuf)
        self.buffers.append(buf)
        return buf

    def enqueue_write(self, queue, buffer, data, offset_bytes=0, blocking=True, wait_for=None):
        raw = np.ascontiguousarray(data).reshape(-1).view(np.uint8)
        if offset_bytes + raw.size > buffer.nbytes:
            raise ComputeError("write out of bounds", INVALID_VALUE)
        buffer.data[offset_bytes: offset_bytes + raw.size] = raw
        self.writes.append((offset_bytes, raw.size, blocking, wait_for))
        return FakeEvent()

    def enqueue_read(self, queue, out, buffer, offset_bytes=0, blocking=True, wait_for=None):
        raw = out.reshape(-1).view(np.uint8)
        if offset_bytes + raw.size > buffer.nbytes:
            raise ComputeError("read out of bounds", INVALID_VALUE)
        raw[:] = buffer.data[offset_bytes: offset_bytes + raw.size]
        self.reads.append((offset_bytes, raw.size, blocking, wait_for))
        return FakeEvent()

    def set_arg(self, kernel, index, value):
        if self.fail_set_arg_at == index:
            return INVALID_ARG_SIZE
        kernel.args[index] = ("value", value)
        return 0

    def set_local_arg(self, kernel, index, nbytes):
        kernel.args[index] = ("local", nbytes)
        return 0

    def set_raw_arg(self, kernel, index, data, nbytes):
        kernel.args[index] = ("raw", bytes(memoryview(data).cast("B")[:nbytes]))
        return 0

    def enqueue_nd_range(self, queue, kernel, global_size, local_size, offset=None, wait_for=None):
        self.launches.append((kernel.name, global_size, local_size, offset, wait_for))
        if self.fail_enqueue:
            return INVALID_WORK_GROUP_SIZE, None
        if kernel.fn is not None:
            args = [kernel.args[i][1] for i in sorted(kernel.args)]
            kernel.fn(global_size, local_size, *args)
        return 0, FakeEvent()


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------

VECTOR_ADD_SOURCE = """
__kernel void vector_add(__global const int* a, __global const int* b,
                         __global int* out, int n)
{
    int gid = get_global_id(0);
    if (gid < n)
        out[gid] = a[gid] + b[gid];
}
"""

SCALE_SOURCE = """
__kernel void scale(__global float* x, float factor, int n)
{
    int gid = get_global_id(0);
    if (gid < n)
        x[gid] *= factor;
}

__kernel void fill(__global float* x, float value, int n)
{
    int gid = get_global_id(0);
    if (gid < n)
        x[gid] = value;
}
"""


def _vector_add(global_size, local_size, a, b, out, n):
    # Work-items past n are launched (global size rounding) but do nothing
    assert global_size[0] >= n
    count = int(n)
    out.view(np.int32)[:count] = a.view(np.int32)[:count] + b.view(np.int32)[:count]


def _scale(global_size, local_size, x, factor, n):
    count = int(n)
    x.view(np.float32)[:count] *= np.float32(factor)


def _fill(global_size, local_size, x, value, n):
    x.view(np.float32)[: int(n)] = np.float32(value)


FAKE_KERNELS = {"vector_add": _vector_add, "scale": _scale, "fill": _fill}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def backend():
    return FakeBackend(FAKE_KERNELS)


@pytest.fixture
def gpu_device():
    return FakeDevice("Fake GPU 0", DeviceType.GPU)


@pytest.fixture
def platform(gpu_device):
    return FakePlatform("Fake Platform", "Fake Vendor", [gpu_device])


@pytest.fixture
def ctx(backend, platform, gpu_device):
    return DeviceContext(backend, platform, gpu_device)


@pytest.fixture
def cpu_ctx(backend):
    device = FakeDevice("Fake CPU", DeviceType.CPU)
    return DeviceContext(backend, FakePlatform("Fake CPU Platform", "Fake Vendor", [device]), device)


@pytest.fixture
def make_device():
    """Factory for fake devices (``make_device(name, device_type=..., fail_build=...)``)."""
    return FakeDevice


@pytest.fixture
def make_platform():
    return FakePlatform


@pytest.fixture
def vector_add_source():
    return VECTOR_ADD_SOURCE


@pytest.fixture
def scale_source():
    return SCALE_SOURCE
