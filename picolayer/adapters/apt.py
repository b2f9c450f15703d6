"""
Debian-family adapters — apt-get, apt and aptitude.

All three share ``/var/lib/apt/lists`` as their cache root. apt-get and
apt also support PPAs: on Ubuntu (or when forced) the support
packages are installed if missing, each PPA is added with
``add-apt-repository``, and everything added is taken away again
before the cache is restored.
"""

from __future__ import annotations

import logging
from pathlib import Path

from picolayer.adapters.base import PackageAdapter
from picolayer.core.models.request import PackageRequest
from picolayer.core.services.snapshot import remove_tree

logger = logging.getLogger(__name__)

APT_LISTS = Path("/var/lib/apt/lists")

NONINTERACTIVE = {"DEBIAN_FRONTEND": "noninteractive"}

PPA_SUPPORT_PACKAGE = "software-properties-common"
# Needed by add-apt-repository on plain Debian only.
DEBIAN_PPA_COMPANION = "python3-launchpadlib"


class AptFamilyAdapter(PackageAdapter):
    """Shared behaviour for the Debian package tools."""

    tool = "apt-get"
    supports_alt_repos = True
    lists_dir = APT_LISTS

    @property
    def name(self) -> str:
        return self.tool

    @property
    def cache_roots(self) -> list[Path]:
        return [self.lists_dir]

    def is_available(self) -> bool:
        return self.host.is_debian_like

    def unavailable_reason(self) -> str:
        return f"requires a Debian or Ubuntu host (detected '{self.host.distro}')"

    def update(self) -> None:
        self._run([self.tool, "update", "-y"], "update", env=NONINTERACTIVE)

    def install(self, packages: list[str]) -> None:
        self._run(
            [self.tool, "install", "-y", "--no-install-recommends", *packages],
            "install", env=NONINTERACTIVE,
        )

    def cleanup(self) -> None:
        self._run([self.tool, "clean"], "clean", env=NONINTERACTIVE)
        remove_tree(self.lists_dir, self.runner)

    # ── PPAs ────────────────────────────────────────────────────

    def resolve_alt_repos(self, request: PackageRequest) -> list[str]:
        if not request.alt_repos:
            return []
        if not self.supports_alt_repos:
            return super().resolve_alt_repos(request)
        if not self.host.is_ubuntu and not request.force_alt_repos_on_foreign_host:
            logger.warning(
                "PPAs are only supported on Ubuntu; ignoring %s "
                "(use --force-ppas-on-non-ubuntu to override)",
                ", ".join(request.alt_repos),
            )
            return []
        return list(request.alt_repos)

    def support_packages(self) -> list[str]:
        packages = [PPA_SUPPORT_PACKAGE]
        if not self.host.is_ubuntu:
            packages.append(DEBIAN_PPA_COMPANION)
        return packages

    def is_installed(self, package: str) -> bool:
        return self.runner.succeeds(["dpkg", "-s", package])

    def bootstrap_alt_repo_support(self) -> list[str]:
        missing = [p for p in self.support_packages() if not self.is_installed(p)]
        if missing:
            logger.info("Installing PPA support packages: %s", ", ".join(missing))
            self.install(missing)
        return missing

    def add_alt_repo(self, repo: str) -> None:
        self._run(["add-apt-repository", "-y", repo], f"add {repo}", env=NONINTERACTIVE)

    def remove_alt_repo(self, repo: str) -> None:
        self._run(
            ["add-apt-repository", "-y", "--remove", repo],
            f"remove {repo}", env=NONINTERACTIVE,
        )

    def purge(self, packages: list[str]) -> None:
        self._run(
            ["apt-get", "purge", "-y", "--auto-remove", *packages],
            "purge", env=NONINTERACTIVE,
        )


class AptGetAdapter(AptFamilyAdapter):
    tool = "apt-get"


class AptAdapter(AptFamilyAdapter):
    """The user-facing ``apt`` front end; requires the command to exist."""

    tool = "apt"

    def is_available(self) -> bool:
        return self.host.is_debian_like and self.host.has_command("apt")

    def unavailable_reason(self) -> str:
        if self.host.is_debian_like:
            return "the 'apt' command is not installed"
        return super().unavailable_reason()


class AptitudeAdapter(AptFamilyAdapter):
    """aptitude, installed through apt-get on first use."""

    tool = "aptitude"
    supports_alt_repos = False

    def ensure_aptitude(self) -> None:
        if self.host.has_command("aptitude"):
            return
        logger.info("aptitude not found; installing it with apt-get")
        self._run(["apt-get", "update", "-y"], "bootstrap update", env=NONINTERACTIVE)
        self._run(
            ["apt-get", "install", "-y", "--no-install-recommends", "aptitude"],
            "bootstrap install", env=NONINTERACTIVE,
        )

    def update(self) -> None:
        self.ensure_aptitude()
        self._run(["aptitude", "update"], "update", env=NONINTERACTIVE)

    def install(self, packages: list[str]) -> None:
        self._run(
            ["aptitude", "install", "-y", "--without-recommends", *packages],
            "install", env=NONINTERACTIVE,
        )
