"""Source modules: composing device source from fragments at runtime.

A module bundles source text with the type and constant parameters it is
instantiated with. Each distinct instantiation gets its own ``module_id``,
which is used both as program cache key and as kernel scope, so e.g. the
float and int variants of a module never collide.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Sequence

import numpy as np

if TYPE_CHECKING:
    from cl_runtime.device import DeviceContext
    from cl_runtime.kernel_call import KernelCall

_CL_TYPE_NAMES = {
    np.dtype(np.bool_): "bool",
    np.dtype(np.int8): "char",
    np.dtype(np.int16): "short",
    np.dtype(np.int32): "int",
    np.dtype(np.int64): "long",
    np.dtype(np.uint8): "uchar",
    np.dtype(np.uint16): "ushort",
    np.dtype(np.uint32): "uint",
    np.dtype(np.uint64): "ulong",
    np.dtype(np.float16): "half",
    np.dtype(np.float32): "float",
    np.dtype(np.float64): "double",
}


def cl_type_name(dtype) -> str:
    """OpenCL C name of a numpy scalar type. Strings (e.g. "float4") pass through."""
    if isinstance(dtype, str):
        return dtype
    key = np.dtype(dtype)
    if key not in _CL_TYPE_NAMES:
        raise TypeError(f"No OpenCL type for dtype {key}")
    return _CL_TYPE_NAMES[key]


def define_type(name: str, dtype) -> str:
    return f"\n#define {name} {cl_type_name(dtype)}\n"


def define_constant(name: str, value) -> str:
    if isinstance(value, (bool, np.bool_)):
        value = int(value)
    return f"\n#define {name} ({value})\n"


def _param_items(params) -> tuple[tuple[str, Any], ...]:
    items = params.items() if isinstance(params, Mapping) else params
    return tuple(sorted(((str(k), v) for k, v in items), key=lambda kv: kv[0]))


def _escape_identifier(text: str) -> str:
    # "_" is escaped too, so distinct ids never map to the same identifier
    return re.sub(r"[^A-Za-z0-9]", lambda m: f"_{ord(m.group()):X}_", text)


@dataclass(frozen=True)
class SourceModule:
    """A named unit of device source with optional includes and parameters.

    Modules are hashable. ``types`` and ``constants`` may be given as dicts
    and are stored as key-sorted tuples of ``(name, value)`` pairs.

    Args:
        name: Module name.
        source: Device source body.
        entrypoints: Kernels registered by default.
        includes: Modules whose source is prepended (include-guarded).
        types: Type parameters, e.g. ``{"T": np.float32}`` → ``#define T float``.
        constants: Constant parameters, e.g. ``{"SCALE": 2}`` → ``#define SCALE (2)``.
    """
    name: str
    source: str
    entrypoints: tuple[str, ...] = ()
    includes: tuple[SourceModule, ...] = ()
    types: tuple[tuple[str, Any], ...] = ()
    constants: tuple[tuple[str, Any], ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "entrypoints", tuple(self.entrypoints))
        object.__setattr__(self, "includes", tuple(self.includes))
        object.__setattr__(self, "types", _param_items(self.types))
        object.__setattr__(self, "constants", _param_items(self.constants))

    @property
    def module_id(self) -> str:
        params = [f"{k}={cl_type_name(v)}" for k, v in self.types]
        params += [f"{k}={v}" for k, v in self.constants]
        if not params:
            return self.name
        return f"{self.name}<{','.join(params)}>"

    @property
    def include_guard(self) -> str:
        return f"CL_MODULE_{_escape_identifier(self.module_id)}_CL"

    def compose(self) -> str:
        parts = [module.compose() for module in self.includes]
        parts += [define_type(k, v) for k, v in self.types]
        parts += [define_constant(k, v) for k, v in self.constants]
        parts.append(self.source)
        code = "".join(parts)
        guard = self.include_guard
        return f"#ifndef {guard}\n#define {guard}\n{code}\n#endif\n"

    def kernel(
        self,
        ctx: DeviceContext,
        kernel_name: str,
        global_size: int | Sequence[int],
        local_size: int | Sequence[int],
        wait_for: Sequence[Any] | None = None,
        queue: int = 0,
    ) -> KernelCall:
        """Compile on first use and return a call for ``kernel_name``."""
        ctx.register_module(self, [kernel_name])
        return ctx.kernel_call(f"{self.module_id}::{kernel_name}", global_size, local_size,
                               wait_for=wait_for, queue=queue)
