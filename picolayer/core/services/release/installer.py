"""
Release installer — fetch, select, verify and extract in one call.

Flow:
    fetch release → select asset → download → verify (optional)
                  → extract named binaries into the install dir

Nothing touches the install directory until verification has passed,
and no package-manager cache is involved, so there is nothing to roll
back: the first error is returned as is.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from picolayer.core.models.release import ChecksumRecord, ExtractPlan
from picolayer.core.services.release.client import ReleaseClient
from picolayer.core.services.release.extractor import archive_kind, extract
from picolayer.core.services.release.resolver import resolve_asset
from picolayer.core.services.release.verifier import verify_asset, verify_digest

logger = logging.getLogger(__name__)


@dataclass
class ReleaseRequest:
    """Parameters of one ``gh-release`` install."""

    repo: str
    binary_names: list[str]
    version: str = "latest"
    install_dir: Path = Path("/usr/local/bin")
    filter: str | None = None
    verify_checksum: bool = False
    checksum: ChecksumRecord | None = None
    public_key: str | None = None
    arch: str | None = None
    os_name: str | None = None


@dataclass
class ReleaseReport:
    """What a release install did."""

    repo: str = ""
    tag: str = ""
    asset: str = ""
    verified: str = "none"
    installed: list[Path] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "repo": self.repo,
            "tag": self.tag,
            "asset": self.asset,
            "verified": self.verified,
            "installed": [str(p) for p in self.installed],
            "duration_ms": self.duration_ms,
        }


def install_release(request: ReleaseRequest, client: ReleaseClient, runner=None) -> ReleaseReport:
    """Install binaries from a release archive.

    Raises:
        ReleaseFetchFailed: Metadata or asset download failed.
        NoSuitableAsset: Nothing fits the platform or filter.
        UnsupportedArchive: The chosen asset is not a known archive.
        ChecksumNotFound / ChecksumMismatch / SignatureInvalid: Verification failed.
        NoBinariesFound: The archive held none of the binaries.
        FilesystemError: A binary could not be written.
    """
    start = time.monotonic()
    report = ReleaseReport(repo=request.repo)

    release = client.fetch_release(request.repo, request.version)
    report.tag = release.tag_name

    asset = resolve_asset(
        release.assets,
        arch=request.arch,
        os_name=request.os_name,
        pattern=request.filter,
        prefer_signed=request.verify_checksum and bool(request.public_key),
    )
    report.asset = asset.name
    archive_kind(asset.name)

    logger.info("Downloading %s", asset.download_url)
    data = client.download(asset.download_url)

    if request.checksum is not None:
        verify_digest(data, request.checksum)
        report.verified = request.checksum.algorithm
    elif request.verify_checksum:
        verify_asset(data, asset, release.assets, client, request.public_key)
        report.verified = "sidecar"
    else:
        logger.debug("Checksum verification not requested")

    plan = ExtractPlan(target=request.install_dir, binary_names=request.binary_names)
    report.installed = extract(asset.name, data, plan, runner)
    report.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Installed %s from %s %s into %s",
        ", ".join(p.name for p in report.installed), request.repo, report.tag, request.install_dir,
    )
    return report
