"""Exception hierarchy and status codes for the OpenCL runtime.

Configuration failures (context, queue, buffer creation, compilation, kernel
extraction) raise. Steady-state dispatch (argument binding, kernel enqueue)
reports a numeric status instead, see ``KernelCall``.
"""

from __future__ import annotations

# OpenCL status codes referenced by the runtime itself.
SUCCESS = 0
DEVICE_NOT_FOUND = -1
BUILD_PROGRAM_FAILURE = -11
INVALID_VALUE = -30
INVALID_KERNEL_NAME = -46
INVALID_ARG_VALUE = -50
INVALID_ARG_SIZE = -51
INVALID_KERNEL_ARGS = -52


class ComputeError(RuntimeError):
    """Error reported by the compute API, with its numeric status code."""

    def __init__(self, message: str, code: int = SUCCESS):
        super().__init__(message)
        self.code = code


class BuildError(ComputeError):
    """Program compilation failed on a device."""

    def __init__(self, device_name: str, build_log: str, code: int = BUILD_PROGRAM_FAILURE):
        super().__init__(f"{device_name}: Could not compile source: {build_log}", code)
        self.device_name = device_name
        self.build_log = build_log


class KernelNotFoundError(ComputeError):
    """Kernel is absent from a compiled program or was never registered."""


class MultiDeviceError(ComputeError):
    """One or more member devices of a global context failed an operation."""

    def __init__(self, failures: dict[int, Exception]):
        details = "; ".join(f"device {idx}: {err}" for idx, err in sorted(failures.items()))
        first = failures[min(failures)]
        super().__init__(
            f"{len(failures)} device(s) failed: {details}",
            getattr(first, "code", SUCCESS),
        )
        self.failures = failures


def check_status(code: int, message: str) -> None:
    """Raise ``ComputeError`` if ``code`` is not ``SUCCESS``."""
    if code != SUCCESS:
        raise ComputeError(f"OpenCL error {code}: {message}", code)
