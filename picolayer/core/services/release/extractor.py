"""
Archive extractor — pull named binaries out of a release archive.

Only entries whose final path component is one of the requested
binary names are written, flat into the target directory, with mode
0755. Everything else (directories, docs, other files) is skipped.
A write that is refused for lack of permission is retried by staging
the file in a temporary directory and moving it into place with
privileged ``install -m 0755``.
"""

from __future__ import annotations

import io
import logging
import os
import tarfile
import tempfile
import zipfile
from collections.abc import Iterator
from pathlib import Path, PurePosixPath
from typing import IO

from picolayer.core.errors import FilesystemError, NoBinariesFound, UnsupportedArchive
from picolayer.core.models.release import ExtractPlan

logger = logging.getLogger(__name__)

BINARY_MODE = 0o755

TAR_MODES: dict[str, str] = {
    ".tar.gz": "r:gz",
    ".tgz": "r:gz",
    ".tar.xz": "r:xz",
    ".txz": "r:xz",
}
ZIP_EXTENSIONS = (".zip",)

_XZ_MAGIC = b"\xfd7zXZ\x00"
_GZIP_MAGIC = b"\x1f\x8b"


def archive_kind(name: str) -> str:
    """The tarfile mode, or ``"zip"``, for an archive file name.

    Raises:
        UnsupportedArchive: Unknown extension.
    """
    lowered = name.lower()
    for ext, mode in TAR_MODES.items():
        if lowered.endswith(ext):
            return mode
    if lowered.endswith(ZIP_EXTENSIONS):
        return "zip"
    raise UnsupportedArchive(f"unsupported archive format: {name}")


def _tar_members(data: bytes, mode: str) -> Iterator[tuple[str, IO[bytes]]]:
    # Some projects publish xz data under .tar.gz names and vice versa.
    if data.startswith(_XZ_MAGIC):
        mode = "r:xz"
    elif data.startswith(_GZIP_MAGIC):
        mode = "r:gz"
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode=mode) as tar:
            for member in tar:
                if not member.isfile():
                    continue
                fileobj = tar.extractfile(member)
                if fileobj is not None:
                    yield member.name, fileobj
    except (tarfile.TarError, EOFError, OSError) as e:
        raise UnsupportedArchive(f"cannot read tar archive: {e}") from e


def _zip_members(data: bytes) -> Iterator[tuple[str, IO[bytes]]]:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                with archive.open(info) as fileobj:
                    yield info.filename, fileobj
    except zipfile.BadZipFile as e:
        raise UnsupportedArchive(f"cannot read zip archive: {e}") from e


def iter_members(archive_name: str, data: bytes) -> Iterator[tuple[str, IO[bytes]]]:
    """Yield ``(member path, file object)`` for every regular file."""
    kind = archive_kind(archive_name)
    if kind == "zip":
        return _zip_members(data)
    return _tar_members(data, kind)


def _write_binary(fileobj: IO[bytes], dest: Path, runner=None) -> None:
    """Write ``dest`` atomically with mode 0755.

    Raises:
        FilesystemError: The write failed and could not be escalated.
    """
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.")
    except PermissionError as e:
        if runner is None:
            raise FilesystemError(dest, e) from e
        _write_binary_privileged(fileobj, dest, runner)
        return
    except OSError as e:
        raise FilesystemError(dest, e) from e
    try:
        with os.fdopen(fd, "wb") as out:
            while chunk := fileobj.read(64 * 1024):
                out.write(chunk)
        os.chmod(tmp, BINARY_MODE)
        os.replace(tmp, dest)
    except OSError as e:
        Path(tmp).unlink(missing_ok=True)
        raise FilesystemError(dest, e) from e
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _write_binary_privileged(fileobj: IO[bytes], dest: Path, runner) -> None:
    logger.info("No write access to %s; installing with privileges", dest.parent)
    with tempfile.TemporaryDirectory(prefix="picolayer-bin-") as staging:
        staged = Path(staging, dest.name)
        with open(staged, "wb") as out:
            while chunk := fileobj.read(64 * 1024):
                out.write(chunk)
        runner.run(
            ["install", "-D", "-m", "0755", str(staged), str(dest)],
            step=f"install {dest.name}",
        )


def extract(archive_name: str, data: bytes, plan: ExtractPlan, runner=None) -> list[Path]:
    """Extract the plan's binaries from ``data`` into ``plan.target``.

    Returns:
        Paths written, in archive order.

    Raises:
        UnsupportedArchive: Unknown or unreadable archive.
        NoBinariesFound: None of the requested names were present.
        FilesystemError: A binary could not be written.
    """
    wanted = set(plan.binary_names)
    written: dict[str, Path] = {}

    for member, fileobj in iter_members(archive_name, data):
        name = PurePosixPath(member).name
        if name not in wanted:
            continue
        if name in written:
            logger.debug("Skipping duplicate %s (already wrote %s)", member, written[name])
            continue
        dest = Path(plan.target) / name
        _write_binary(fileobj, dest, runner)
        written[name] = dest
        logger.info("Installed %s → %s", member, dest)

    if not written:
        raise NoBinariesFound(plan.binary_names)
    missing = wanted - set(written)
    if missing:
        logger.warning("Not found in archive: %s", ", ".join(sorted(missing)))
    return list(written.values())
