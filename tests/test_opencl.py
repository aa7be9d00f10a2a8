"""End-to-end tests on a real OpenCL platform through pyopencl."""

import numpy as np
import numpy.testing as npt
import pytest

from cl_runtime.array import DeviceArray
from cl_runtime.arguments import LocalMemory
from cl_runtime.environment import Environment
from cl_runtime.errors import SUCCESS, BuildError
from cl_runtime.module import SourceModule

try:
    from cl_runtime.opencl_backend import OpenCLBackend
    HAS_OPENCL = bool(Environment(OpenCLBackend()).create_global_context().num_devices)
except Exception:
    HAS_OPENCL = False

pytestmark = pytest.mark.skipif(not HAS_OPENCL, reason="No OpenCL device available")

REDUCE_SOURCE = """
__kernel void block_sum(__global const float* x, __global float* out,
                        __local float* scratch, int n)
{
    int gid = get_global_id(0);
    int lid = get_local_id(0);
    scratch[lid] = gid < n ? x[gid] : 0.0f;
    barrier(CLK_LOCAL_MEM_FENCE);
    for (int s = get_local_size(0) / 2; s > 0; s >>= 1) {
        if (lid < s)
            scratch[lid] += scratch[lid + s];
        barrier(CLK_LOCAL_MEM_FENCE);
    }
    if (lid == 0)
        out[get_group_id(0)] = scratch[0];
}
"""


@pytest.fixture(scope="module")
def cl_ctx():
    env = Environment(OpenCLBackend())
    platform = env.platform_by_preference()
    return env.create_device_context(platform, env.devices(platform)[0])


class TestOpenCL:
    def test_device_info(self, cl_ctx):
        assert cl_ctx.name
        assert cl_ctx.version.startswith("OpenCL")
        assert isinstance(cl_ctx.extensions, list)

    def test_vector_add(self, cl_ctx, vector_add_source):
        cl_ctx.register_source(vector_add_source, ["vector_add"])
        n = 1000
        a = DeviceArray.from_numpy(np.arange(n, dtype=np.int32), cl_ctx)
        b = DeviceArray.from_numpy(np.arange(n, dtype=np.int32), cl_ctx)
        out = DeviceArray.empty(n, cl_ctx, np.int32)
        call = cl_ctx.kernel_call("vector_add", n, 64)
        assert call(a, b, out, np.int32(n)) == SUCCESS
        cl_ctx.finish()
        npt.assert_array_equal(out.read(), 2 * np.arange(n, dtype=np.int32))

    def test_local_memory(self, cl_ctx):
        cl_ctx.register_source(REDUCE_SOURCE, ["block_sum"])
        n, local = 100, 32
        x = DeviceArray.from_numpy(np.ones(n, dtype=np.float32), cl_ctx)
        groups = (n + local - 1) // local
        out = DeviceArray.empty(groups, cl_ctx, np.float32)
        call = cl_ctx.kernel_call("block_sum", n, local)
        assert call(x, out, LocalMemory(np.float32, local), np.int32(n)) == SUCCESS
        cl_ctx.finish()
        npt.assert_allclose(out.read(), [32, 32, 32, 4])

    def test_templated_module(self, cl_ctx):
        module = SourceModule(
            "axpy",
            "__kernel void axpy(__global T* y, __global const T* x, T a, int n)\n"
            "{ int i = get_global_id(0); if (i < n) y[i] += a * x[i]; }\n",
            entrypoints=("axpy",),
            types={"T": np.float32},
        )
        y = DeviceArray.from_numpy(np.ones(10, dtype=np.float32), cl_ctx)
        x = DeviceArray.from_numpy(np.arange(10, dtype=np.float32), cl_ctx)
        call = module.kernel(cl_ctx, "axpy", 10, 8)
        assert call(y, x, np.float32(2.0), np.int32(10)) == SUCCESS
        cl_ctx.finish()
        npt.assert_allclose(y.read(), 1 + 2 * np.arange(10))

    def test_build_error(self, cl_ctx):
        with pytest.raises(BuildError, match="Could not compile source"):
            cl_ctx.register_source("__kernel void broken( {", ["broken"])
