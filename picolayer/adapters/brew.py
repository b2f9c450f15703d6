"""
Homebrew adapter.

brew refuses to run as root, so every step runs unprivileged. The
cache root is ``$HOMEBREW_CACHE`` when set, else the platform default.
"""

from __future__ import annotations

import os
from pathlib import Path

from picolayer.adapters.base import PackageAdapter


def default_brew_cache(system: str, home: Path | None = None) -> Path:
    home = home if home is not None else Path.home()
    if system == "darwin":
        return home / "Library" / "Caches" / "Homebrew"
    return home / ".cache" / "Homebrew"


class BrewAdapter(PackageAdapter):
    @property
    def name(self) -> str:
        return "brew"

    @property
    def cache_roots(self) -> list[Path]:
        override = os.environ.get("HOMEBREW_CACHE")
        if override:
            return [Path(override)]
        return [default_brew_cache(self.host.system)]

    def is_available(self) -> bool:
        return self.host.has_command("brew")

    def unavailable_reason(self) -> str:
        return "'brew' is not on PATH"

    def update(self) -> None:
        self._run(["brew", "update"], "update", privileged=False)

    def install(self, packages: list[str]) -> None:
        self._run(["brew", "install", *packages], "install", privileged=False)

    def cleanup(self) -> None:
        self._run(["brew", "cleanup"], "cleanup", privileged=False)
