"""Tests for GlobalContext: active device selection and broadcast registration."""

import pytest

from cl_runtime.device import DeviceContext
from cl_runtime.errors import BuildError, MultiDeviceError
from cl_runtime.global_context import GlobalContext
from cl_runtime.module import SourceModule


@pytest.fixture
def three_devices(backend, make_device, make_platform):
    devices = [
        make_device("GPU 0"),
        make_device("GPU 1", fail_build=True),
        make_device("GPU 2"),
    ]
    platform = make_platform("Fake Platform", "Fake Vendor", devices)
    return GlobalContext([DeviceContext(backend, platform, d) for d in devices])


def healthy(gctx):
    return GlobalContext([c for i, c in enumerate(gctx) if i != 1])


class TestGlobalContext:
    def test_single_context(self, ctx):
        gctx = GlobalContext(ctx)
        assert gctx.num_devices == 1
        assert gctx.active_device is ctx

    def test_active_device(self, three_devices):
        assert three_devices.active_index == 0
        three_devices.set_active_device(2)
        assert three_devices.active_index == 2
        assert three_devices.active_device.name == "GPU 2"
        assert three_devices.device(1).name == "GPU 1"

    def test_active_device_out_of_range(self, three_devices):
        with pytest.raises(IndexError):
            three_devices.set_active_device(3)
        with pytest.raises(IndexError):
            three_devices.device(-1)
        assert three_devices.active_index == 0

    def test_iteration(self, three_devices):
        assert [c.name for c in three_devices] == ["GPU 0", "GPU 1", "GPU 2"]
        assert len(three_devices) == 3

    def test_broadcast_success(self, three_devices, vector_add_source):
        ok = healthy(three_devices)
        ok.register_source(vector_add_source, ["vector_add"])
        assert all(c.has_kernel("vector_add") for c in ok)

    def test_broadcast_partial_failure(self, three_devices, vector_add_source):
        with pytest.raises(MultiDeviceError) as exc_info:
            three_devices.register_source(vector_add_source, ["vector_add"])

        err = exc_info.value
        assert list(err.failures) == [1]
        assert isinstance(err.failures[1], BuildError)
        assert "GPU 1: Could not compile source" in str(err)
        assert three_devices.device(0).has_kernel("vector_add")
        assert not three_devices.device(1).has_kernel("vector_add")
        assert three_devices.device(2).has_kernel("vector_add")

    def test_failure_on_first_device_still_tries_others(self, backend, make_device, make_platform,
                                                        vector_add_source):
        devices = [make_device("bad", fail_build=True), make_device("good")]
        platform = make_platform("P", "V", devices)
        gctx = GlobalContext([DeviceContext(backend, platform, d) for d in devices])
        with pytest.raises(MultiDeviceError):
            gctx.register_source(vector_add_source, ["vector_add"])
        assert gctx.device(1).has_kernel("vector_add")

    def test_register_module(self, three_devices):
        module = SourceModule("ops", "__kernel void twice(__global int* x) {}", entrypoints=("twice",))
        ok = healthy(three_devices)
        ok.register_module(module)
        assert all(c.has_kernel("ops::twice") for c in ok)

    def test_register_source_file(self, three_devices, tmp_path, scale_source):
        path = tmp_path / "scale.cl"
        path.write_text(scale_source)
        ok = healthy(three_devices)
        ok.register_source_file(str(path), ["scale", "fill"], scope="s")
        assert all(c.has_kernel("s::fill") for c in ok)
