"""
Snapshot / restore — capture a directory tree and put it back exactly.

``capture`` copies a cache root into scratch storage preserving mode
bits, symlink targets and, when running as root, ownership; the copy is
then checked with FS diff. ``restore`` deletes the target, copies the
snapshot back by the same rules and checks again. Whenever the
in-process copy or delete is refused with ``PermissionError`` the same
operation is retried through privileged exec (``cp -a`` / ``rm -rf``).
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from picolayer.core.errors import (
    FilesystemError,
    PicolayerError,
    SnapshotCaptureFailed,
    SnapshotMismatch,
)
from picolayer.core.services.fs_diff import verify_trees

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "picolayer-"


class Snapshot:
    """A captured copy of one directory tree.

    The copy lives in ``scratch``; ``tree`` is the copied root. Call
    ``release`` (or use the snapshot as a context manager) to delete
    the scratch storage. Release is best effort and never raises.
    """

    def __init__(self, source: Path, scratch: Path, runner=None):
        self.source = Path(source)
        self.scratch = Path(scratch)
        self.tree = self.scratch / "tree"
        self.captured_at = datetime.now(UTC)
        self.runner = runner
        self.released = False

    def __repr__(self) -> str:
        return f"Snapshot(source={self.source}, scratch={self.scratch})"

    def __enter__(self) -> Snapshot:
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def release(self) -> None:
        if self.released:
            return
        try:
            remove_tree(self.scratch, self.runner)
        except (OSError, PicolayerError) as e:
            logger.warning("Could not remove snapshot scratch %s: %s", self.scratch, e)
        self.released = True


# ── Tree helpers ────────────────────────────────────────────────


def _make_writable(root: Path) -> None:
    """Add owner write/exec on every directory so its entries can be unlinked."""
    for dirpath, dirnames, _ in os.walk(root):
        for d in [dirpath, *(os.path.join(dirpath, n) for n in dirnames)]:
            if os.path.islink(d):
                continue
            mode = os.lstat(d).st_mode
            wanted = mode | stat.S_IWUSR | stat.S_IXUSR | stat.S_IRUSR
            if mode != wanted:
                os.chmod(d, stat.S_IMODE(wanted))


def remove_tree(path: Path, runner=None) -> None:
    """Delete ``path`` recursively, escalating on permission denial.

    Raises:
        FilesystemError: The delete failed and could not be escalated.
    """
    path = Path(path)
    if not os.path.lexists(path):
        return
    try:
        if path.is_symlink() or not path.is_dir():
            path.unlink()
            return
        try:
            shutil.rmtree(path)
            return
        except PermissionError as e:
            logger.debug("rmtree %s refused (%s); relaxing directory modes", path, e)
        _make_writable(path)
        shutil.rmtree(path)
        return
    except PermissionError as e:
        if runner is None:
            raise FilesystemError(path, e, "remove") from e
        logger.info("Removing %s with privileges (%s)", path, e)
    except OSError as e:
        raise FilesystemError(path, e, "remove") from e
    runner.run(["rm", "-rf", str(path)], step=f"remove {path}")


def _copy_ownership(src: Path, dest: Path) -> None:
    """Mirror uid/gid of every entry in ``src`` onto ``dest`` (root only)."""
    os.lchown(dest, os.lstat(src).st_uid, os.lstat(src).st_gid)
    for dirpath, dirnames, filenames in os.walk(src):
        rel = os.path.relpath(dirpath, src)
        for name in dirnames + filenames:
            st = os.lstat(os.path.join(dirpath, name))
            os.lchown(os.path.join(dest, rel, name), st.st_uid, st.st_gid)


def copy_tree(src: Path, dest: Path, runner=None) -> None:
    """Copy ``src`` to the not-yet-existing ``dest`` preserving metadata.

    Symlinks are copied as links and missing parents of ``dest`` are
    created. When the ordinary copy is denied, any partial copy is
    removed and ``cp -a src dest`` runs with privileges, so ``dest`` is
    created by the privileged side too.
    """
    src, dest = Path(src), Path(dest)
    try:
        shutil.copytree(src, dest, symlinks=True, copy_function=shutil.copy2)
        if os.geteuid() == 0:
            _copy_ownership(src, dest)
        return
    except (PermissionError, shutil.Error) as e:
        if runner is None:
            raise
        logger.info("Copy of %s denied (%s); retrying with privileges", src, e)

    remove_tree(dest, runner)
    if not dest.parent.is_dir():
        runner.run(["mkdir", "-p", str(dest.parent)], step=f"create {dest.parent}")
    runner.run(["cp", "-a", str(src), str(dest)], step=f"copy {src}")


# ── Capture / restore ───────────────────────────────────────────


def capture(source: Path, scratch_root: Path, runner=None, *, verify: bool = True) -> Snapshot:
    """Snapshot ``source`` into a fresh directory under ``scratch_root``.

    Raises:
        SnapshotCaptureFailed: The copy could not be made.
        SnapshotMismatch: The copy does not compare equal to ``source``.
    """
    source = Path(source)
    scratch_root = Path(scratch_root)
    try:
        scratch_root.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix=f"{SCRATCH_PREFIX}snap-", dir=scratch_root))
    except OSError as e:
        raise SnapshotCaptureFailed(source, f"cannot create scratch storage: {e}") from e

    snapshot = Snapshot(source, scratch, runner)
    try:
        copy_tree(source, snapshot.tree, runner)
    except (OSError, shutil.Error, PicolayerError) as e:
        snapshot.release()
        raise SnapshotCaptureFailed(source, str(e)) from e

    if verify:
        detail = verify_trees(source, snapshot.tree, runner)
        if detail is not None:
            snapshot.release()
            raise SnapshotMismatch(source, snapshot.tree, detail)

    logger.info("Captured %s into %s", source, snapshot.tree)
    return snapshot


def restore(snapshot: Snapshot, target: Path, runner=None, *, verify: bool = True) -> None:
    """Replace ``target`` with the contents of ``snapshot``.

    Re-running with the same snapshot is safe: the target is always
    deleted and rebuilt from the snapshot.

    Raises:
        SnapshotMismatch: The restored tree differs from the snapshot.
    """
    target = Path(target)
    runner = runner if runner is not None else snapshot.runner
    remove_tree(target, runner)
    copy_tree(snapshot.tree, target, runner)

    if verify:
        detail = verify_trees(snapshot.tree, target, runner)
        if detail is not None:
            raise SnapshotMismatch(snapshot.tree, target, detail)
    logger.info("Restored %s from snapshot", target)
