"""cl_runtime: host-side dispatch of OpenCL kernels to one or more devices."""

from cl_runtime.arguments import KernelArgumentList, LocalMemory, RawMemory
from cl_runtime.array import ArrayIterator, DeviceArray
from cl_runtime.backend import Backend, DeviceBuffer, DeviceInfo, DeviceType, MemFlags
from cl_runtime.config import DEFAULT_CONFIG, RuntimeConfig
from cl_runtime.device import DeviceContext, qualified_kernel_name
from cl_runtime.environment import Environment
from cl_runtime.errors import (
    SUCCESS,
    BuildError,
    ComputeError,
    KernelNotFoundError,
    MultiDeviceError,
    check_status,
)
from cl_runtime.global_context import GlobalContext
from cl_runtime.kernel_call import KernelCall, round_global_size
from cl_runtime.logging_config import get_logger, setup_logging
from cl_runtime.module import SourceModule, cl_type_name
from cl_runtime.profiler import ProfileResult, profile

__version__ = "0.1.0"

__all__ = [
    "ArrayIterator",
    "Backend",
    "BuildError",
    "ComputeError",
    "DEFAULT_CONFIG",
    "DeviceArray",
    "DeviceBuffer",
    "DeviceContext",
    "DeviceInfo",
    "DeviceType",
    "Environment",
    "GlobalContext",
    "KernelArgumentList",
    "KernelCall",
    "KernelNotFoundError",
    "LocalMemory",
    "MemFlags",
    "MultiDeviceError",
    "ProfileResult",
    "RawMemory",
    "RuntimeConfig",
    "SUCCESS",
    "SourceModule",
    "check_status",
    "cl_type_name",
    "get_logger",
    "profile",
    "qualified_kernel_name",
    "round_global_size",
    "setup_logging",
]

try:
    from cl_runtime.opencl_backend import OpenCLBackend

    __all__ += ["OpenCLBackend"]
except ImportError:
    pass
