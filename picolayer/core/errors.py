"""
Error kinds — the single exception hierarchy for picolayer.

Every failure the tool can report is a subclass of ``PicolayerError``
carrying a stable ``exit_code`` and a short ``kind`` label. The CLI
maps these to one human-readable line on stderr and a process exit
code; nothing else in the package decides exit codes.
"""

from __future__ import annotations

from pathlib import Path


class PicolayerError(Exception):
    """Base class for every reportable failure."""

    exit_code: int = 1
    kind: str = "error"


class ConfigError(PicolayerError):
    """Raised when environment configuration is invalid."""

    exit_code = 2
    kind = "config"


# ── Package install pipeline ────────────────────────────────────


class HostMismatch(PicolayerError):
    """The adapter was invoked on a host it does not support."""

    exit_code = 10
    kind = "host-mismatch"

    def __init__(self, adapter: str, reason: str):
        self.adapter = adapter
        self.reason = reason
        super().__init__(f"{adapter} cannot be used on this host: {reason}")


class AdapterStepFailure(PicolayerError):
    """A package-manager subprocess exited non-zero."""

    exit_code = 11
    kind = "adapter-step"

    def __init__(self, step: str, exit_code: int, argv: list[str] | None = None):
        self.step = step
        self.step_exit_code = exit_code
        self.argv = list(argv or [])
        super().__init__(f"step '{step}' failed with exit code {exit_code}")


class SnapshotCaptureFailed(PicolayerError):
    """The cache directory could not be copied into scratch storage."""

    exit_code = 12
    kind = "snapshot-capture"

    def __init__(self, path: Path, reason: str):
        self.path = path
        super().__init__(f"could not snapshot {path}: {reason}")


class SnapshotMismatch(PicolayerError):
    """A copied tree does not compare equal to its source."""

    exit_code = 13
    kind = "snapshot-mismatch"

    def __init__(self, source: Path, copy: Path, detail: str = ""):
        self.source = source
        self.copy = copy
        suffix = f" ({detail})" if detail else ""
        super().__init__(f"copy of {source} differs from the original{suffix}")


class RestoreFailed(PicolayerError):
    """Cache restoration failed; always reported over the primary error."""

    exit_code = 14
    kind = "restore-failed"

    def __init__(self, cause: BaseException, primary: BaseException | None = None):
        self.cause = cause
        self.primary = primary
        outcome = f"after install error: {primary}" if primary else "after successful install"
        super().__init__(f"restore phase failed {outcome}: {cause}")


class LockHeld(PicolayerError):
    """Another picolayer install holds the global lock."""

    exit_code = 15
    kind = "lock-held"

    def __init__(self, path: Path, attempts: int):
        self.path = path
        self.attempts = attempts
        super().__init__(
            f"install lock {path} still held after {attempts} attempts; "
            "another picolayer instance may be running"
        )


class PrivilegeUnavailable(PicolayerError):
    """Root privileges were needed but sudo is not available."""

    exit_code = 16
    kind = "privilege"


class ReadFailure(PicolayerError):
    """An I/O error other than permission denial while walking a tree."""

    exit_code = 17
    kind = "read-failure"

    def __init__(self, path: Path, error: OSError):
        self.path = path
        self.error = error
        self.errno = error.errno
        super().__init__(f"cannot read {path}: {error.strerror or error}")


class FilesystemError(PicolayerError):
    """Writing, creating or deleting a path failed."""

    exit_code = 18
    kind = "io"

    def __init__(self, path: Path | None, error: OSError, action: str = "write"):
        self.path = path
        self.error = error
        self.errno = error.errno
        self.action = action
        target = f" {path}" if path is not None else ""
        super().__init__(f"cannot {action}{target}: {error.strerror or error}")

    @classmethod
    def from_os_error(cls, error: OSError) -> FilesystemError:
        """Wrap an ``OSError`` that escaped every service seam."""
        path = Path(error.filename) if error.filename else None
        return cls(path, error, "access")


# ── Release install ─────────────────────────────────────────────


class ReleaseFetchFailed(PicolayerError):
    """The release API or a blob URL could not be fetched."""

    exit_code = 20
    kind = "network"

    def __init__(self, url: str, status: int | None = None, reason: str = ""):
        self.url = url
        self.status = status
        detail = f"HTTP {status}" if status is not None else reason or "network error"
        super().__init__(f"failed to fetch {url}: {detail}")


class NoSuitableAsset(PicolayerError):
    """No release asset matches the platform or filter."""

    exit_code = 21
    kind = "no-asset"


class NoBinariesFound(PicolayerError):
    """The archive held none of the requested binary names."""

    exit_code = 22
    kind = "no-binaries"

    def __init__(self, names: list[str]):
        self.names = list(names)
        super().__init__(f"none of {', '.join(names)} found in archive")


class UnsupportedArchive(PicolayerError):
    """The asset name has no recognized archive extension."""

    exit_code = 23
    kind = "unsupported-archive"


class ChecksumNotFound(PicolayerError):
    """No checksum could be located for the selected asset."""

    exit_code = 24
    kind = "checksum-not-found"


class ChecksumMismatch(PicolayerError):
    """The computed digest differs from the published one."""

    exit_code = 25
    kind = "checksum-mismatch"

    def __init__(self, expected: str, got: str):
        self.expected = expected
        self.got = got
        super().__init__(f"checksum mismatch: expected {expected}, got {got}")


class SignatureInvalid(PicolayerError):
    """Detached signature verification failed."""

    exit_code = 26
    kind = "signature-invalid"
