"""
Adapter registry — lookup of package adapters by name.

The CLI resolves its subcommand to an adapter here; the orchestrator
only ever sees the resulting ``PackageAdapter``.
"""

from __future__ import annotations

import logging

from picolayer.adapters.apk import ApkAdapter
from picolayer.adapters.apt import AptAdapter, AptGetAdapter, AptitudeAdapter
from picolayer.adapters.base import PackageAdapter
from picolayer.adapters.brew import BrewAdapter
from picolayer.core.services.host import HostInfo
from picolayer.core.services.privileged import PrivilegedRunner

logger = logging.getLogger(__name__)

ADAPTER_TYPES: tuple[type[PackageAdapter], ...] = (
    AptGetAdapter,
    AptAdapter,
    AptitudeAdapter,
    ApkAdapter,
    BrewAdapter,
)


class AdapterRegistry:
    """Name → adapter mapping."""

    def __init__(self):
        self._adapters: dict[str, PackageAdapter] = {}

    def register(self, adapter: PackageAdapter) -> None:
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def get(self, name: str) -> PackageAdapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters)

    def available(self) -> list[str]:
        """Names of adapters whose host predicate holds."""
        return [name for name, a in self._adapters.items() if a.is_available()]


def build_registry(
    runner: PrivilegedRunner | None = None,
    host: HostInfo | None = None,
) -> AdapterRegistry:
    """Registry with every built-in adapter sharing one runner and host."""
    runner = runner if runner is not None else PrivilegedRunner()
    registry = AdapterRegistry()
    for adapter_type in ADAPTER_TYPES:
        registry.register(adapter_type(runner=runner, host=host))
    return registry
