"""
Asset resolver — pick the release asset that fits this platform.

Order of preference:
    1. the first asset matching the user's ``--filter`` regex
    2. (when a signature will be checked) a platform asset that has
       a ``.asc`` / ``.sig`` side-car
    3. the first asset naming our architecture and OS, with a known
       archive extension
    4. the first asset with a known archive extension at all

An invalid filter regex is logged and ignored.
"""

from __future__ import annotations

import logging
import platform
import re

from picolayer.core.errors import NoSuitableAsset
from picolayer.core.models.release import ReleaseAsset

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSIONS = (".tar.gz", ".tgz", ".tar.xz", ".txz", ".zip")
SIGNATURE_SUFFIXES = (".asc", ".sig")

ARCH_ALIASES: dict[str, tuple[str, ...]] = {
    "x86_64": ("x86_64", "amd64", "x64", "x86-64"),
    "aarch64": ("aarch64", "arm64"),
    "arm": ("arm", "armv7"),
}

OS_ALIASES: dict[str, tuple[str, ...]] = {
    "linux": ("linux",),
    "macos": ("darwin", "macos", "osx"),
}

_MACHINE_NAMES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv7l": "arm",
    "armv6l": "arm",
}


def current_arch() -> str:
    machine = platform.machine().lower()
    return _MACHINE_NAMES.get(machine, machine)


def current_os() -> str:
    system = platform.system().lower()
    return "macos" if system == "darwin" else system


def is_archive(name: str) -> bool:
    return name.lower().endswith(ARCHIVE_EXTENSIONS)


def matches_platform(name: str, arch: str, os_name: str) -> bool:
    """Name carries an arch alias, an OS alias, and an archive extension."""
    lowered = name.lower()
    arch_aliases = ARCH_ALIASES.get(arch, (arch,))
    os_aliases = OS_ALIASES.get(os_name, (os_name,))
    return (
        any(alias in lowered for alias in arch_aliases)
        and any(alias in lowered for alias in os_aliases)
        and is_archive(lowered)
    )


def _filtered(assets: list[ReleaseAsset], pattern: str) -> ReleaseAsset | None:
    try:
        regex = re.compile(pattern)
    except re.error as e:
        logger.warning("Ignoring invalid --filter regex %r: %s", pattern, e)
        return None
    for asset in assets:
        if regex.search(asset.name):
            return asset
    raise NoSuitableAsset(f"no release asset matches filter {pattern!r}")


def has_signature(asset: ReleaseAsset, assets: list[ReleaseAsset]) -> bool:
    names = {a.name.lower() for a in assets}
    return any(f"{asset.name.lower()}{s}" in names for s in SIGNATURE_SUFFIXES)


def resolve_asset(
    assets: list[ReleaseAsset],
    *,
    arch: str | None = None,
    os_name: str | None = None,
    pattern: str | None = None,
    prefer_signed: bool = False,
) -> ReleaseAsset:
    """Select one asset from ``assets`` (see module docstring).

    Raises:
        NoSuitableAsset: Nothing usable in the list.
    """
    arch = arch or current_arch()
    os_name = os_name or current_os()

    if pattern:
        chosen = _filtered(assets, pattern)
        if chosen is not None:
            logger.info("Selected %s (matched filter)", chosen.name)
            return chosen

    platform_assets = [a for a in assets if matches_platform(a.name, arch, os_name)]

    if prefer_signed:
        for asset in platform_assets:
            if has_signature(asset, assets):
                logger.info("Selected %s (platform match with signature)", asset.name)
                return asset

    if platform_assets:
        logger.info("Selected %s (platform match %s/%s)", platform_assets[0].name, arch, os_name)
        return platform_assets[0]

    for asset in assets:
        if is_archive(asset.name):
            logger.warning(
                "No asset names %s/%s; falling back to %s", arch, os_name, asset.name,
            )
            return asset

    names = ", ".join(a.name for a in assets[:10]) or "none"
    raise NoSuitableAsset(f"no archive asset for {arch}/{os_name} (assets: {names})")
