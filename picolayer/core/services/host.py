"""
Host detection — which distribution family are we running on?

Read-only probes of ``/etc/os-release`` and its older siblings. The
adapters only ever ask two questions: "is this family A (Debian-like)?"
and "is this family B (Alpine)?", plus "is this the Ubuntu dialect?"
for alt-repository support.
"""

from __future__ import annotations

import logging
import platform
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

UBUNTU = "ubuntu"
DEBIAN = "debian"
ALPINE = "alpine"
OTHER = "other"

OS_RELEASE = Path("/etc/os-release")
ALPINE_RELEASE = Path("/etc/alpine-release")
DEBIAN_VERSION = Path("/etc/debian_version")
LSB_RELEASE = Path("/etc/lsb-release")


@dataclass(frozen=True)
class HostInfo:
    """Snapshot of the host's identity, resolved once per invocation."""

    distro: str = OTHER
    system: str = "linux"

    @property
    def is_ubuntu(self) -> bool:
        return self.distro == UBUNTU

    @property
    def is_debian_like(self) -> bool:
        return self.distro in (UBUNTU, DEBIAN)

    @property
    def is_alpine(self) -> bool:
        return self.distro == ALPINE

    @property
    def is_macos(self) -> bool:
        return self.system == "darwin"

    def has_command(self, name: str) -> bool:
        return shutil.which(name) is not None


def parse_os_release(text: str) -> dict[str, str]:
    """Parse KEY=VALUE lines (quoted or unquoted) into a dict.

    Keys are upper-cased; ``ID_LIKE`` separators (commas, semicolons)
    are normalised to spaces.
    """
    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip().upper()
        value = value.strip().strip("\"'")
        if key == "ID_LIKE":
            value = re.sub(r"[,;]", " ", value)
        values[key] = value
    return values


def classify(values: dict[str, str]) -> str:
    """Map parsed os-release values to a distro constant."""
    ident = values.get("ID", "").lower()
    like = values.get("ID_LIKE", "").lower().split()

    def matches(target: str) -> bool:
        return ident == target or target in like

    # Order matters: Ubuntu derivatives list both ubuntu and debian.
    for target in (UBUNTU, ALPINE, DEBIAN):
        if matches(target):
            return target
    return OTHER


def detect_distro(root: Path = Path("/")) -> str:
    """Detect the Linux distribution of the filesystem rooted at ``root``."""
    os_release = root / OS_RELEASE.relative_to("/")
    try:
        distro = classify(parse_os_release(os_release.read_text(encoding="utf-8")))
    except OSError:
        distro = OTHER
    if distro != OTHER:
        return distro

    if (root / ALPINE_RELEASE.relative_to("/")).exists():
        return ALPINE
    if (root / DEBIAN_VERSION.relative_to("/")).exists():
        return DEBIAN

    try:
        lsb = parse_os_release((root / LSB_RELEASE.relative_to("/")).read_text(encoding="utf-8"))
    except OSError:
        lsb = {}
    if lsb.get("DISTRIB_ID", "").lower() == UBUNTU:
        return UBUNTU
    return OTHER


def detect_host(root: Path = Path("/")) -> HostInfo:
    """Resolve the current host identity."""
    info = HostInfo(distro=detect_distro(root), system=platform.system().lower())
    logger.debug("Detected host: distro=%s system=%s", info.distro, info.system)
    return info
