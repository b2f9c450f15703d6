"""
Install orchestrator — the cache-preserving install pipeline.

Flow:
    lock → host check → resolve alt-repos → snapshot cache roots
         → update → [bootstrap + add alt-repos + update] → install
         → [remove alt-repos + purge support] → cleanup
         → restore cache roots (always) → drop scratch

Once the snapshots exist, restore runs no matter how the middle steps
end, including ``KeyboardInterrupt`` and termination. A restore failure
is reported as ``RestoreFailed`` wrapping whatever happened first;
otherwise the first error is re-raised untouched.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from picolayer.adapters.base import PackageAdapter
from picolayer.core.config.settings import Settings
from picolayer.core.errors import (
    HostMismatch,
    PicolayerError,
    RestoreFailed,
    SnapshotCaptureFailed,
)
from picolayer.core.models.request import PackageRequest
from picolayer.core.persistence.install_lock import InstallLock
from picolayer.core.services.snapshot import (
    SCRATCH_PREFIX,
    Snapshot,
    capture,
    remove_tree,
    restore,
)

logger = logging.getLogger(__name__)


@dataclass
class InstallReport:
    """What one pipeline run did."""

    adapter: str = ""
    packages: list[str] = field(default_factory=list)
    alt_repos: list[str] = field(default_factory=list)
    support_installed: list[str] = field(default_factory=list)
    captured: list[Path] = field(default_factory=list)
    absent: list[Path] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "adapter": self.adapter,
            "packages": self.packages,
            "alt_repos": self.alt_repos,
            "support_installed": self.support_installed,
            "captured": [str(p) for p in self.captured],
            "absent": [str(p) for p in self.absent],
            "duration_ms": self.duration_ms,
        }


def install_packages(
    request: PackageRequest,
    adapter: PackageAdapter,
    settings: Settings,
) -> InstallReport:
    """Install ``request`` with ``adapter`` and leave its caches untouched.

    Holds the global install lock for the whole run.

    Raises:
        LockHeld: Another install is in progress.
        HostMismatch: The adapter does not fit this host.
        SnapshotCaptureFailed / SnapshotMismatch: Caches could not be captured.
        AdapterStepFailure: A package-manager step failed (caches restored).
        RestoreFailed: Restoring the caches failed.
        FilesystemError: A step could not write or delete a path (caches restored).
    """
    with InstallLock(settings.lock_dir):
        return _run_pipeline(request, adapter, settings)


def _run_pipeline(
    request: PackageRequest,
    adapter: PackageAdapter,
    settings: Settings,
) -> InstallReport:
    start = time.monotonic()
    report = InstallReport(adapter=adapter.name, packages=list(request.packages))

    # ── 1. Host ──
    if not adapter.is_available():
        raise HostMismatch(adapter.name, adapter.unavailable_reason())

    # ── 2. Alt-repos ──
    alt_repos = adapter.resolve_alt_repos(request)
    report.alt_repos = list(alt_repos)

    # ── 3. Capture ──
    runner = adapter.runner
    try:
        settings.temp_root.mkdir(parents=True, exist_ok=True)
        scratch_root = Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=settings.temp_root))
    except OSError as e:
        raise SnapshotCaptureFailed(settings.temp_root, f"cannot create scratch storage: {e}") from e

    snapshots: dict[Path, Snapshot] = {}
    try:
        for root in adapter.cache_roots:
            if root.is_dir():
                snapshots[root] = capture(root, scratch_root, runner)
                report.captured.append(root)
            else:
                logger.debug("Cache root %s absent; it must stay absent", root)
                report.absent.append(root)
    except BaseException:
        _discard(snapshots, scratch_root, runner)
        raise

    # ── 4–8. Package-manager steps ──
    primary: BaseException | None = None
    try:
        _run_steps(request, adapter, alt_repos, report)
    except BaseException as e:
        logger.error("Install via %s failed: %s; restoring caches", adapter.name, e)
        primary = e

    # ── 9. Restore ──
    restore_error: BaseException | None = None
    try:
        for root in adapter.cache_roots:
            try:
                if root in snapshots:
                    restore(snapshots[root], root, runner, verify=settings.verify_cache)
                else:
                    remove_tree(root, runner)
            except (PicolayerError, OSError, shutil.Error) as e:
                logger.error("Restoring %s failed: %s", root, e)
                if restore_error is None:
                    restore_error = e
    finally:
        # ── 10. Scratch ──
        _discard(snapshots, scratch_root, runner)

    report.duration_ms = int((time.monotonic() - start) * 1000)

    if restore_error is not None:
        raise RestoreFailed(restore_error, primary) from restore_error
    if primary is not None:
        raise primary
    logger.info(
        "Installed %s via %s in %dms; caches restored",
        ", ".join(request.packages), adapter.name, report.duration_ms,
    )
    return report


def _run_steps(
    request: PackageRequest,
    adapter: PackageAdapter,
    alt_repos: list[str],
    report: InstallReport,
) -> None:
    adapter.update()

    added: list[str] = []
    if alt_repos:
        report.support_installed = adapter.bootstrap_alt_repo_support()
        for repo in alt_repos:
            adapter.add_alt_repo(repo)
            added.append(repo)
        adapter.update()

    adapter.install(request.packages)

    for repo in added:
        adapter.remove_alt_repo(repo)
    if report.support_installed:
        adapter.purge(report.support_installed)

    adapter.cleanup()


def _discard(snapshots: dict[Path, Snapshot], scratch_root: Path, runner) -> None:
    for snapshot in snapshots.values():
        snapshot.release()
    try:
        remove_tree(scratch_root, runner)
    except (PicolayerError, OSError) as e:
        logger.warning("Could not remove scratch directory %s: %s", scratch_root, e)
