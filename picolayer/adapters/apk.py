"""
Alpine adapter — apk.
"""

from __future__ import annotations

from pathlib import Path

from picolayer.adapters.base import PackageAdapter
from picolayer.core.services.snapshot import remove_tree

APK_CACHE = Path("/var/cache/apk")


class ApkAdapter(PackageAdapter):
    cache_dir = APK_CACHE

    @property
    def name(self) -> str:
        return "apk"

    @property
    def cache_roots(self) -> list[Path]:
        return [self.cache_dir]

    def is_available(self) -> bool:
        return self.host.is_alpine

    def unavailable_reason(self) -> str:
        return f"requires an Alpine host (detected '{self.host.distro}')"

    def update(self) -> None:
        self._run(["apk", "update"], "update")

    def install(self, packages: list[str]) -> None:
        self._run(["apk", "add", "--no-cache", *packages], "add")

    def cleanup(self) -> None:
        remove_tree(self.cache_dir, self.runner)
