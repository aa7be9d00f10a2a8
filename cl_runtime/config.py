"""Runtime configuration for device contexts and platform selection."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

from cl_runtime.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RuntimeConfig:
    """Tunable knobs shared by every ``DeviceContext`` created from it.

    ``zero_copy_on_cpu`` enables host-pointer-backed allocations on CPU-class
    devices. It only affects performance; reads and writes behave the same
    with either allocation strategy.
    """
    build_options: tuple[str, ...] = ()
    platform_preference: tuple[str, ...] = ("NVIDIA", "AMD", "Intel")
    zero_copy_on_cpu: bool = True
    default_queue_count: int = 1

    def __post_init__(self):
        if self.default_queue_count < 1:
            raise ValueError(f"default_queue_count must be >= 1, got {self.default_queue_count}")

    @classmethod
    def from_env(cls, base: RuntimeConfig | None = None) -> RuntimeConfig:
        """Apply ``CL_RUNTIME_*`` environment overrides on top of ``base``.

        Recognized variables:
            CL_RUNTIME_BUILD_OPTIONS: whitespace-separated compiler options.
            CL_RUNTIME_PLATFORM_PREFERENCE: comma-separated platform keywords.
            CL_RUNTIME_ZERO_COPY: "0" disables the CPU zero-copy policy.
            CL_RUNTIME_QUEUES: number of in-order queues created per device.
        """
        config = base or cls()
        overrides: dict[str, object] = {}

        options = os.getenv("CL_RUNTIME_BUILD_OPTIONS")
        if options:
            overrides["build_options"] = tuple(options.split())

        preference = os.getenv("CL_RUNTIME_PLATFORM_PREFERENCE")
        if preference:
            overrides["platform_preference"] = tuple(k.strip() for k in preference.split(",") if k.strip())

        zero_copy = os.getenv("CL_RUNTIME_ZERO_COPY")
        if zero_copy is not None:
            overrides["zero_copy_on_cpu"] = zero_copy.strip().lower() not in ("0", "false", "no", "off")

        queues = os.getenv("CL_RUNTIME_QUEUES")
        if queues:
            try:
                count = int(queues)
            except ValueError:
                logger.warning("Invalid CL_RUNTIME_QUEUES value %r, using default", queues)
            else:
                if count >= 1:
                    overrides["default_queue_count"] = count
                else:
                    logger.warning("CL_RUNTIME_QUEUES must be >= 1, got %d; using default", count)

        return replace(config, **overrides) if overrides else config


DEFAULT_CONFIG = RuntimeConfig()
