"""
Tests for snapshot capture / restore.
"""

import os
import shutil
import stat

from pathlib import Path

import pytest

from picolayer.core.errors import FilesystemError, SnapshotCaptureFailed, SnapshotMismatch
from picolayer.core.services import snapshot as snapshot_mod
from picolayer.core.services.fs_diff import trees_equal
from picolayer.core.services.privileged import PrivilegedRunner
from picolayer.core.services.snapshot import capture, copy_tree, remove_tree, restore


CACHE = {
    "index": "old-contents",
    "dists": ("link", "../state"),
    "partial": {},
    "lists": {"main_Packages": b"\x1f\x8b binary", "lock": ""},
}


@pytest.fixture
def direct_runner(monkeypatch):
    """A real runner that executes commands directly instead of through sudo."""
    monkeypatch.setattr(PrivilegedRunner, "is_root", staticmethod(lambda: True))
    return PrivilegedRunner()


def _modes(root):
    out = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = os.path.join(dirpath, name)
            out[os.path.relpath(path, root)] = stat.S_IMODE(os.lstat(path).st_mode)
    return out


class TestCapture:
    def test_capture_copies_tree(self, tmp_path, tree_factory):
        source = tree_factory(tmp_path / "cache", CACHE)
        snap = capture(source, tmp_path / "scratch")
        try:
            assert snap.source == source
            assert snap.tree.is_relative_to(tmp_path / "scratch")
            assert trees_equal(source, snap.tree)
            assert os.readlink(snap.tree / "dists") == "../state"
        finally:
            snap.release()

    def test_capture_does_not_modify_source(self, tmp_path, tree_factory):
        source = tree_factory(tmp_path / "cache", CACHE)
        reference = tree_factory(tmp_path / "ref", CACHE)
        with capture(source, tmp_path / "scratch"):
            pass
        assert trees_equal(source, reference)

    def test_release_removes_scratch(self, tmp_path, tree_factory):
        source = tree_factory(tmp_path / "cache", CACHE)
        snap = capture(source, tmp_path / "scratch")
        snap.release()
        assert not snap.scratch.exists()
        snap.release()  # idempotent

    def test_missing_source_fails_capture(self, tmp_path):
        with pytest.raises(SnapshotCaptureFailed):
            capture(tmp_path / "missing", tmp_path / "scratch")
        assert list((tmp_path / "scratch").iterdir()) == []

    def test_permission_denied_falls_back_to_privileged_copy(self, tmp_path, tree_factory, runner, monkeypatch):
        source = tree_factory(tmp_path / "cache", {"f": "x"})
        real_copytree = shutil.copytree
        calls = []

        def flaky_copytree(src, dst, **kwargs):
            calls.append(src)
            if len(calls) == 1:
                raise PermissionError(13, "Permission denied", str(src))
            return real_copytree(src, dst, **kwargs)

        monkeypatch.setattr(snapshot_mod.shutil, "copytree", flaky_copytree)
        # The recording runner does not copy, so the capture must fail verification.
        with pytest.raises(SnapshotMismatch):
            capture(source, tmp_path / "scratch", runner)
        assert runner.calls[0][:3] == ["cp", "-a", str(source)]
        assert runner.calls[0][3].endswith("/tree")

    def test_privileged_copy_produces_equal_snapshot(self, tmp_path, tree_factory, direct_runner, monkeypatch):
        source = tree_factory(tmp_path / "cache", CACHE)
        real_copytree = shutil.copytree

        def denied_for_source(src, dst, **kwargs):
            if Path(src) == source:
                raise PermissionError(13, "Permission denied", str(src))
            return real_copytree(src, dst, **kwargs)

        monkeypatch.setattr(snapshot_mod.shutil, "copytree", denied_for_source)
        with capture(source, tmp_path / "scratch", direct_runner) as snap:
            assert trees_equal(source, snap.tree)
            assert os.readlink(snap.tree / "dists") == "../state"

    def test_mismatch_is_detected(self, tmp_path, tree_factory, monkeypatch):
        source = tree_factory(tmp_path / "cache", {"f": "x"})

        def lossy_copy(src, dest, runner=None):
            dest.mkdir(parents=True)

        monkeypatch.setattr(snapshot_mod, "copy_tree", lossy_copy)
        with pytest.raises(SnapshotMismatch):
            capture(source, tmp_path / "scratch")


class TestRestore:
    def test_round_trip_into_modified_target(self, tmp_path, tree_factory):
        source = tree_factory(tmp_path / "cache", CACHE)
        reference = tree_factory(tmp_path / "ref", CACHE)
        with capture(source, tmp_path / "scratch") as snap:
            (source / "index").write_text("new-contents")
            (source / "new-file").write_text("junk")
            shutil.rmtree(source / "lists")
            restore(snap, source)
        assert trees_equal(source, reference)

    def test_round_trip_into_missing_target(self, tmp_path, tree_factory):
        source = tree_factory(tmp_path / "cache", CACHE)
        with capture(source, tmp_path / "scratch") as snap:
            shutil.rmtree(source)
            restore(snap, source)
            assert trees_equal(source, snap.tree)

    def test_mixed_permissions_preserved(self, tmp_path, tree_factory):
        source = tree_factory(tmp_path / "cache", {"ro": "r", "exe": "#!", "sealed": {"f": "x"}, "priv": "p"})
        os.chmod(source / "ro", 0o444)
        os.chmod(source / "exe", 0o755)
        os.chmod(source / "priv", 0o600)
        os.chmod(source / "sealed", 0o555)
        before = _modes(source)

        with capture(source, tmp_path / "scratch") as snap:
            restore(snap, source)
            restore(snap, source)  # re-run over a read-only directory
            assert _modes(source) == before
            assert trees_equal(source, snap.tree)
        assert not snap.scratch.exists()

    def test_restore_is_idempotent(self, tmp_path, tree_factory):
        source = tree_factory(tmp_path / "cache", CACHE)
        with capture(source, tmp_path / "scratch") as snap:
            restore(snap, source)
            restore(snap, source)
            assert trees_equal(source, snap.tree)


class TestRemoveTree:
    def test_missing_path_is_noop(self, tmp_path):
        remove_tree(tmp_path / "nothing")

    def test_removes_symlink_not_target(self, tmp_path, tree_factory):
        target = tree_factory(tmp_path / "target", {"keep": "1"})
        link = tmp_path / "link"
        link.symlink_to(target)
        remove_tree(link)
        assert not os.path.lexists(link)
        assert (target / "keep").exists()

    def test_escalates_when_denied(self, tmp_path, tree_factory, runner, monkeypatch):
        root = tree_factory(tmp_path / "cache", {"f": "x"})

        def denied(path, *args, **kwargs):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr(snapshot_mod.shutil, "rmtree", denied)
        remove_tree(root, runner)
        assert runner.calls == [["rm", "-rf", str(root)]]

    def test_unremovable_without_runner_is_filesystem_error(self, tmp_path, tree_factory, monkeypatch):
        root = tree_factory(tmp_path / "cache", {"f": "x"})

        def read_only(path, *args, **kwargs):
            raise OSError(30, "Read-only file system", str(path))

        monkeypatch.setattr(snapshot_mod.shutil, "rmtree", read_only)
        with pytest.raises(FilesystemError) as exc:
            remove_tree(root)
        assert exc.value.kind == "io"
        assert exc.value.path == root


class TestPrivilegedRestore:
    """Restoring a cache root whose parent only root may write to."""

    @pytest.fixture
    def locked_parent(self, tmp_path, tree_factory, monkeypatch):
        parent = tmp_path / "apt"
        lists = tree_factory(parent / "lists", CACHE)
        real_copytree = shutil.copytree
        real_mkdir = Path.mkdir

        def copytree(src, dst, **kwargs):
            if Path(dst) == lists:
                raise PermissionError(13, "Permission denied", str(dst))
            return real_copytree(src, dst, **kwargs)

        def mkdir(self, *args, **kwargs):
            if self in (parent, lists):
                raise PermissionError(13, "Permission denied", str(self))
            return real_mkdir(self, *args, **kwargs)

        snap = capture(lists, tmp_path / "scratch")
        monkeypatch.setattr(snapshot_mod.shutil, "copytree", copytree)
        monkeypatch.setattr(Path, "mkdir", mkdir)
        yield lists, snap
        snap.release()

    def test_target_rebuilt_through_runner(self, tmp_path, tree_factory, locked_parent, direct_runner):
        lists, snap = locked_parent
        reference = tree_factory(tmp_path / "ref", CACHE)
        (lists / "index").write_text("fresh index")
        (lists / "junk").write_text("download")

        restore(snap, lists, direct_runner)

        assert lists.is_dir()
        assert trees_equal(lists, reference)
        assert os.readlink(lists / "dists") == "../state"

    def test_target_rebuilt_after_it_was_deleted(self, locked_parent, direct_runner):
        lists, snap = locked_parent
        shutil.rmtree(lists)
        restore(snap, lists, direct_runner)
        assert trees_equal(lists, snap.tree)

    def test_missing_parent_created_with_privileges(self, tmp_path, tree_factory, runner, monkeypatch):
        source = tree_factory(tmp_path / "cache", {"f": "x"})
        dest = tmp_path / "var" / "lib" / "lists"

        def denied(src, dst, **kwargs):
            raise PermissionError(13, "Permission denied", str(dst))

        monkeypatch.setattr(snapshot_mod.shutil, "copytree", denied)
        copy_tree(source, dest, runner)
        assert runner.calls == [
            ["mkdir", "-p", str(dest.parent)],
            ["cp", "-a", str(source), str(dest)],
        ]
