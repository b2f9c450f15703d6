"""
FS diff — structural equality of two directory trees.

Both trees are walked in lockstep, preorder, with the entries of each
directory sorted by file name. Two trees are equal when every pair of
entries agrees on depth, name, kind (file / dir / symlink / other) and
content: file bytes, or the literal symlink target. Symlinks are never
followed. The root itself is not compared, only what it contains.

``PermissionError`` escapes unchanged so callers can retry through
privileged exec; every other ``OSError`` becomes ``ReadFailure``.
"""

from __future__ import annotations

import logging
import os
import stat
from collections.abc import Iterator
from dataclasses import dataclass
from itertools import zip_longest
from pathlib import Path

from picolayer.core.errors import AdapterStepFailure, ReadFailure

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


@dataclass(frozen=True)
class Entry:
    """One walked entry, relative to its tree root."""

    depth: int
    name: str
    kind: str
    path: Path


def _kind(mode: int) -> str:
    if stat.S_ISLNK(mode):
        return "symlink"
    if stat.S_ISDIR(mode):
        return "dir"
    if stat.S_ISREG(mode):
        return "file"
    return "other"


def walk(root: Path) -> Iterator[Entry]:
    """Yield every entry below ``root`` in sorted preorder."""
    yield from _walk(Path(root), 1)


def _walk(directory: Path, depth: int) -> Iterator[Entry]:
    try:
        names = sorted(os.listdir(directory))
    except PermissionError:
        raise
    except OSError as e:
        raise ReadFailure(directory, e) from e

    for name in names:
        path = directory / name
        try:
            mode = os.lstat(path).st_mode
        except PermissionError:
            raise
        except OSError as e:
            raise ReadFailure(path, e) from e
        kind = _kind(mode)
        yield Entry(depth=depth, name=name, kind=kind, path=path)
        if kind == "dir":
            yield from _walk(path, depth + 1)


def _same_bytes(a: Path, b: Path) -> bool:
    try:
        if os.path.getsize(a) != os.path.getsize(b):
            return False
        with open(a, "rb") as fa, open(b, "rb") as fb:
            while True:
                chunk_a = fa.read(_CHUNK)
                chunk_b = fb.read(_CHUNK)
                if chunk_a != chunk_b:
                    return False
                if not chunk_a:
                    return True
    except PermissionError:
        raise
    except OSError as e:
        raise ReadFailure(Path(e.filename or a), e) from e


def _same_link(a: Path, b: Path) -> bool:
    try:
        return os.readlink(a) == os.readlink(b)
    except PermissionError:
        raise
    except OSError as e:
        raise ReadFailure(Path(e.filename or a), e) from e


def compare_trees(a: Path, b: Path) -> str | None:
    """Compare two trees.

    Returns:
        ``None`` when equal, otherwise a short description of the
        first difference found.

    Raises:
        PermissionError: An entry could not be read.
        ReadFailure: Any other I/O error.
    """
    a, b = Path(a), Path(b)
    if os.path.lexists(a) != os.path.lexists(b):
        return f"missing tree: {b if os.path.lexists(a) else a}"
    for left, right in zip_longest(walk(a), walk(b)):
        if left is None:
            return f"only in {b}: {right.path.relative_to(b)}"
        if right is None:
            return f"only in {a}: {left.path.relative_to(a)}"

        rel = left.path.relative_to(a)
        if left.depth != right.depth or left.name != right.name:
            return f"entry mismatch: {rel} vs {right.path.relative_to(b)}"
        if left.kind != right.kind:
            return f"type mismatch at {rel}: {left.kind} vs {right.kind}"
        if left.kind == "file" and not _same_bytes(left.path, right.path):
            return f"content differs: {rel}"
        if left.kind == "symlink" and not _same_link(left.path, right.path):
            return f"symlink target differs: {rel}"
    return None


def trees_equal(a: Path, b: Path) -> bool:
    """True when ``a`` and ``b`` compare equal."""
    return compare_trees(a, b) is None


def compare_trees_privileged(a: Path, b: Path, runner) -> str | None:
    """Compare with ``diff -r`` under privileged exec.

    Used when the in-process walk hits ``PermissionError``.
    """
    result = runner.run(
        ["diff", "-r", "--no-dereference", str(a), str(b)],
        step="privileged diff",
        check=False,
        quiet=True,
    )
    if result.exit_code == 0:
        return None
    if result.exit_code == 1:
        return f"privileged diff reported differences between {a} and {b}"
    raise AdapterStepFailure("privileged diff", result.exit_code, result.argv)


def verify_trees(a: Path, b: Path, runner=None) -> str | None:
    """Compare in-process, retrying privileged on permission denial."""
    try:
        return compare_trees(a, b)
    except PermissionError as e:
        if runner is None:
            raise
        logger.info("Permission denied comparing trees (%s); retrying privileged", e)
        return compare_trees_privileged(a, b, runner)
