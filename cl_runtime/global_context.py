"""Global context: a collection of device contexts addressed as one."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Iterator, Sequence

from cl_runtime.device import DeviceContext
from cl_runtime.errors import ComputeError, MultiDeviceError
from cl_runtime.logging_config import get_logger

if TYPE_CHECKING:
    from cl_runtime.module import SourceModule

logger = get_logger(__name__)


class GlobalContext:
    """Ordered collection of ``DeviceContext`` objects with an active device.

    Source registration is broadcast to every member. Each device succeeds or
    fails on its own: a failure on one device never undoes the work done on
    the others.
    """

    def __init__(self, contexts: DeviceContext | Sequence[DeviceContext]):
        if isinstance(contexts, DeviceContext):
            contexts = [contexts]
        self._contexts: list[DeviceContext] = list(contexts)
        self._active_device = 0

    def __len__(self) -> int:
        return len(self._contexts)

    def __iter__(self) -> Iterator[DeviceContext]:
        return iter(self._contexts)

    @property
    def num_devices(self) -> int:
        return len(self._contexts)

    @property
    def active_index(self) -> int:
        return self._active_device

    @property
    def active_device(self) -> DeviceContext:
        return self.device()

    def set_active_device(self, index: int) -> None:
        self._check_index(index)
        self._active_device = index

    def device(self, index: int | None = None) -> DeviceContext:
        """Return device ``index``, or the active device when omitted."""
        if index is None:
            index = self._active_device
        self._check_index(index)
        return self._contexts[index]

    def register_source(
        self,
        source: str,
        kernel_names: Sequence[str],
        program_id: str | None = None,
        scope: str = "",
    ) -> None:
        """Compile and register kernels on every device.

        Raises:
            MultiDeviceError: after all devices were attempted, if any failed.
        """
        self._broadcast(lambda ctx: ctx.register_source(source, kernel_names, program_id, scope))

    def register_source_file(self, path: str, kernel_names: Sequence[str], scope: str = "") -> None:
        with open(path) as f:
            source = f.read()
        self.register_source(source, kernel_names, program_id=path, scope=scope)

    def register_module(self, module: SourceModule, kernel_names: Sequence[str] | None = None) -> None:
        self._broadcast(lambda ctx: ctx.register_module(module, kernel_names))

    def _broadcast(self, fn: Callable[[DeviceContext], None]) -> None:
        failures: dict[int, Exception] = {}
        for index, ctx in enumerate(self._contexts):
            try:
                fn(ctx)
            except ComputeError as e:
                logger.warning("Device %d (%s) failed: %s", index, ctx.name, e)
                failures[index] = e
        if failures:
            raise MultiDeviceError(failures)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._contexts):
            raise IndexError(f"Device {index} out of range (have {len(self._contexts)})")
