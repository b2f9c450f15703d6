"""
Package adapter base — the contract between the orchestrator and a
platform package manager.

An adapter declares the cache roots its package manager mutates, a
host predicate, and three steps: ``update``, ``install`` and
``cleanup``. Every step runs through the privileged runner and raises
``AdapterStepFailure`` on a non-zero exit. The orchestrator never runs
package-manager commands itself.

Adapters may also support alt-repositories (PPAs). The default
implementation refuses them; the apt family overrides it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from picolayer.core.models.request import PackageRequest
from picolayer.core.models.exec import ExecResult
from picolayer.core.services.host import HostInfo, detect_host
from picolayer.core.services.privileged import PrivilegedRunner

logger = logging.getLogger(__name__)


class PackageAdapter(ABC):
    """Abstract base class for platform package adapters.

    To add a package manager:
        1. Subclass PackageAdapter
        2. Implement name, cache_roots, is_available, update, install, cleanup
        3. Register it in ``build_registry``
    """

    supports_alt_repos: bool = False

    def __init__(self, runner: PrivilegedRunner | None = None, host: HostInfo | None = None):
        self.runner = runner if runner is not None else PrivilegedRunner()
        self._host = host

    @property
    def host(self) -> HostInfo:
        if self._host is None:
            self._host = detect_host()
        return self._host

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier, also the CLI subcommand (e.g. 'apt-get')."""

    @property
    @abstractmethod
    def cache_roots(self) -> list[Path]:
        """Directories the package manager treats as its mutable cache."""

    @abstractmethod
    def is_available(self) -> bool:
        """Host predicate: can this adapter run here? Never raises."""

    def unavailable_reason(self) -> str:
        return f"host distro '{self.host.distro}' is not supported"

    @abstractmethod
    def update(self) -> None:
        """Refresh package indices."""

    @abstractmethod
    def install(self, packages: list[str]) -> None:
        """Install ``packages``."""

    @abstractmethod
    def cleanup(self) -> None:
        """Drop whatever the package manager cached during this run."""

    # ── Alt-repositories ────────────────────────────────────────

    def resolve_alt_repos(self, request: PackageRequest) -> list[str]:
        """The alt-repos that will actually be used for ``request``."""
        if request.alt_repos:
            logger.warning(
                "%s does not support alternative repositories; ignoring %s",
                self.name, ", ".join(request.alt_repos),
            )
        return []

    def bootstrap_alt_repo_support(self) -> list[str]:
        """Install the tools needed to add alt-repos.

        Returns:
            The packages newly installed by this call (to purge later).
        """
        return []

    def add_alt_repo(self, repo: str) -> None:
        raise NotImplementedError(f"{self.name} cannot add alt-repos")

    def remove_alt_repo(self, repo: str) -> None:
        raise NotImplementedError(f"{self.name} cannot remove alt-repos")

    def purge(self, packages: list[str]) -> None:
        raise NotImplementedError(f"{self.name} cannot purge packages")

    # ── Helpers ─────────────────────────────────────────────────

    def _run(self, argv: list[str], step: str, *, privileged: bool = True, env=None) -> ExecResult:
        return self.runner.run(argv, step=f"{self.name} {step}", privileged=privileged, env=env)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
