"""Platform and device enumeration, and construction of contexts from it."""

from __future__ import annotations

from typing import Any, Sequence

from cl_runtime.backend import Backend, DeviceType
from cl_runtime.config import DEFAULT_CONFIG, RuntimeConfig
from cl_runtime.device import DeviceContext
from cl_runtime.errors import DEVICE_NOT_FOUND, ComputeError
from cl_runtime.global_context import GlobalContext
from cl_runtime.logging_config import get_logger

logger = get_logger(__name__)


class Environment:
    """Entry point: lists platforms and builds device/global contexts."""

    def __init__(self, backend: Backend | None = None, config: RuntimeConfig | None = None):
        if backend is None:
            from cl_runtime.opencl_backend import OpenCLBackend

            backend = OpenCLBackend()
        self._backend = backend
        self._config = config or DEFAULT_CONFIG
        self._platforms = backend.get_platforms()

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def platforms(self) -> list[Any]:
        return list(self._platforms)

    @property
    def num_platforms(self) -> int:
        return len(self._platforms)

    def platform(self, index: int):
        if not 0 <= index < len(self._platforms):
            raise IndexError(f"Platform {index} out of range (have {len(self._platforms)})")
        return self._platforms[index]

    def platform_by_preference(self, keywords: Sequence[str] | None = None):
        """Select a platform by keyword.

        Earlier keywords have priority. A keyword matches if it occurs in the
        name or vendor of a platform that has at least one device. Falls back
        to the first platform if nothing matches.
        """
        if not self._platforms:
            raise ComputeError("No available OpenCL platforms!", DEVICE_NOT_FOUND)
        if keywords is None:
            keywords = self._config.platform_preference

        for keyword in keywords:
            for platform in self._platforms:
                name = self._backend.platform_name(platform)
                vendor = self._backend.platform_vendor(platform)
                if (keyword in name or keyword in vendor) and self.devices(platform):
                    logger.debug("Selected platform %r for keyword %r", name, keyword)
                    return platform
        return self._platforms[0]

    def devices(self, platform, device_type: DeviceType = DeviceType.ALL) -> list[Any]:
        return self._backend.get_devices(platform, device_type)

    def create_device_context(self, platform, device) -> DeviceContext:
        return DeviceContext(self._backend, platform, device, config=self._config)

    def create_global_context(self, platform=None, device_type: DeviceType = DeviceType.ALL) -> GlobalContext:
        """One device context per matching device, from ``platform`` or from all platforms."""
        platforms = self._platforms if platform is None else [platform]
        contexts = [
            self.create_device_context(p, device)
            for p in platforms
            for device in self.devices(p, device_type)
        ]
        logger.info("Created global context with %d device(s)", len(contexts))
        return GlobalContext(contexts)

    def create_global_gpu_context(self) -> GlobalContext:
        return self.create_global_context(device_type=DeviceType.GPU)

    def create_global_cpu_context(self) -> GlobalContext:
        return self.create_global_context(device_type=DeviceType.CPU)
