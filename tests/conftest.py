"""
Shared test fixtures and configuration.

Subprocess and network seams are replaced with in-process fakes so no
test needs root, a package manager, or the network.
"""

from __future__ import annotations

import io
import logging
import os
import tarfile
import zipfile
from pathlib import Path

import pytest

from picolayer.adapters.base import PackageAdapter
from picolayer.core.config.settings import Settings
from picolayer.core.errors import AdapterStepFailure
from picolayer.core.models.exec import ExecResult
from picolayer.core.models.release import Release, ReleaseAsset
from picolayer.core.models.request import PackageRequest
from picolayer.core.services.host import HostInfo
from picolayer.core.services.privileged import PrivilegedRunner
from picolayer.core.services.snapshot import remove_tree


class RecordingRunner(PrivilegedRunner):
    """Privileged runner that records argv instead of spawning.

    ``exit_codes`` maps an argv prefix (tuple) to the exit code that
    command should report; everything else exits 0.
    """

    def __init__(self, exit_codes: dict[tuple[str, ...], int] | None = None):
        super().__init__()
        self.calls: list[list[str]] = []
        self.exit_codes = dict(exit_codes or {})

    def set_exit(self, *prefix: str, code: int) -> None:
        self.exit_codes[tuple(prefix)] = code

    def _exit_for(self, argv: list[str]) -> int:
        for prefix, code in self.exit_codes.items():
            if tuple(argv[: len(prefix)]) == prefix:
                return code
        return 0

    def run(self, argv, *, step=None, privileged=True, check=True, quiet=False, env=None):
        self.calls.append(list(argv))
        code = self._exit_for(list(argv))
        result = ExecResult(argv=list(argv), exit_code=code, privileged=privileged)
        if check and code != 0:
            raise AdapterStepFailure(step or argv[0], code, list(argv))
        return result

    def commands(self) -> list[str]:
        return [" ".join(call) for call in self.calls]


class MockPackageAdapter(PackageAdapter):
    """Package adapter double that behaves like a real package manager.

    ``update`` writes fresh index files into the cache root, ``install``
    drops one file per package into ``install_root``, ``cleanup``
    removes the cache root. Steps can be made to fail and every call is
    logged.
    """

    supports_alt_repos = True

    def __init__(
        self,
        cache_root: Path,
        install_root: Path,
        *,
        adapter_name: str = "mock",
        available: bool = True,
        host: HostInfo | None = None,
        preinstalled: set[str] | None = None,
    ):
        super().__init__(runner=None, host=host or HostInfo(distro="ubuntu"))
        self._name = adapter_name
        self._available = available
        self.cache_root = Path(cache_root)
        self.install_root = Path(install_root)
        self.installed: set[str] = set(preinstalled or ())
        self.sources: list[str] = []
        self.call_log: list[tuple[str, tuple[str, ...]]] = []
        self._failures: dict[str, int] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def cache_roots(self) -> list[Path]:
        return [self.cache_root]

    @property
    def steps(self) -> list[str]:
        return [step for step, _ in self.call_log]

    def is_available(self) -> bool:
        return self._available

    def unavailable_reason(self) -> str:
        return "mock host predicate is false"

    def set_failure(self, step: str, exit_code: int = 100) -> None:
        self._failures[step] = exit_code

    def _record(self, step: str, *args: str) -> None:
        self.call_log.append((step, args))
        if step in self._failures:
            raise AdapterStepFailure(f"{self._name} {step}", self._failures[step])

    def update(self) -> None:
        self._record("update")
        self.cache_root.mkdir(parents=True, exist_ok=True)
        (self.cache_root / "Packages").write_text("fresh index\n")
        (self.cache_root / "partial").mkdir(exist_ok=True)

    def install(self, packages: list[str]) -> None:
        self._record("install", *packages)
        self.install_root.mkdir(parents=True, exist_ok=True)
        for package in packages:
            if package not in self.installed:
                (self.install_root / package).write_text(f"#!/bin/sh\necho {package}\n")
                self.installed.add(package)
        (self.cache_root / "archives.bin").write_bytes(b"\x00" * 64)

    def cleanup(self) -> None:
        self._record("cleanup")
        remove_tree(self.cache_root)

    def resolve_alt_repos(self, request: PackageRequest) -> list[str]:
        if request.alt_repos and not self.host.is_ubuntu and not request.force_alt_repos_on_foreign_host:
            return []
        return list(request.alt_repos)

    def bootstrap_alt_repo_support(self) -> list[str]:
        self._record("bootstrap")
        if "support-pkg" in self.installed:
            return []
        self.installed.add("support-pkg")
        return ["support-pkg"]

    def add_alt_repo(self, repo: str) -> None:
        self._record("add-repo", repo)
        self.sources.append(repo)

    def remove_alt_repo(self, repo: str) -> None:
        self._record("remove-repo", repo)
        self.sources.remove(repo)

    def purge(self, packages: list[str]) -> None:
        self._record("purge", *packages)
        self.installed.difference_update(packages)


class FakeReleaseClient:
    """Release client double serving canned metadata and blobs."""

    def __init__(self, release: Release, blobs: dict[str, bytes] | None = None):
        self.release = release
        self.blobs = dict(blobs or {})
        self.fetched: list[tuple[str, str]] = []
        self.downloaded: list[str] = []

    def fetch_release(self, repo: str, version: str = "latest") -> Release:
        self.fetched.append((repo, version))
        return self.release

    def download(self, url: str) -> bytes:
        from picolayer.core.errors import ReleaseFetchFailed

        self.downloaded.append(url)
        if url not in self.blobs:
            raise ReleaseFetchFailed(url, status=404)
        return self.blobs[url]


def build_tree(root: Path, spec: dict) -> Path:
    """Create files (str/bytes), dirs (dict) and symlinks (("link", target))."""
    root.mkdir(parents=True, exist_ok=True)
    for name, value in spec.items():
        path = root / name
        if isinstance(value, dict):
            build_tree(path, value)
        elif isinstance(value, tuple) and value[0] == "link":
            os.symlink(value[1], path)
        elif isinstance(value, bytes):
            path.write_bytes(value)
        else:
            path.write_text(value)
    return root


def make_tar(members: dict[str, bytes], compression: str = "gz") -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=f"w:{compression}") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def make_zip(members: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buf.getvalue()


def asset(name: str) -> ReleaseAsset:
    return ReleaseAsset(name=name, download_url=f"https://example.test/dl/{name}")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated under ``tmp_path`` with analytics off."""
    return Settings(
        temp_root=tmp_path / "scratch",
        lock_dir=tmp_path / "lock",
        analytics_enabled=False,
    )


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def ubuntu() -> HostInfo:
    return HostInfo(distro="ubuntu")


@pytest.fixture
def debian() -> HostInfo:
    return HostInfo(distro="debian")


@pytest.fixture
def tree_factory():
    return build_tree


@pytest.fixture
def archives():
    """Archive builders: ``archives.tar(members, "gz")``, ``archives.zip(members)``."""

    class _Archives:
        tar = staticmethod(make_tar)
        zip = staticmethod(make_zip)

    return _Archives


@pytest.fixture
def release_factory():
    """Build ``(Release, FakeReleaseClient)`` from ``{asset name: bytes}``."""

    def _make(files: dict[str, bytes], tag: str = "v1.0.0"):
        assets = [asset(name) for name in files]
        release = Release(tag_name=tag, assets=assets)
        blobs = {a.download_url: files[a.name] for a in assets}
        return release, FakeReleaseClient(release, blobs)

    return _make


@pytest.fixture(autouse=True)
def _no_analytics(monkeypatch):
    """Never let a test send analytics."""
    monkeypatch.delenv("PH_PICOLAYER_API_KEY", raising=False)


@pytest.fixture(autouse=True)
def _isolated_logging():
    """Drop handlers and levels a CLI run left on the package logger."""
    package = logging.getLogger("picolayer")
    handlers, level = list(package.handlers), package.level
    yield package
    for handler in list(package.handlers):
        if handler not in handlers:
            package.removeHandler(handler)
            handler.close()
    package.setLevel(level)


@pytest.fixture
def make_mock(tmp_path):
    """Build a ``MockPackageAdapter`` installing into ``tmp_path/usr-bin``."""

    def _make(cache_root: Path, **kwargs) -> MockPackageAdapter:
        return MockPackageAdapter(cache_root, tmp_path / "usr-bin", **kwargs)

    return _make
