"""
Tests for the no-follow staging write helpers.
"""

import os
import stat
from io import BytesIO

import pytest

import core.release.fs_safe as fs_safe_mod
from core.release.fs_safe import (
    UnsafeFilesystemPath,
    UnsupportedFilesystemSafety,
    safe_makedirs,
    safe_write_fileobj,
)


def test_fs_safe_write_creates_parents_with_fixed_modes(tmp_path):
    """Files are written 0644 under 0755 directories created on the way."""

    safe_write_fileobj(tmp_path, ("a", "b", "c.txt"), BytesIO(b"hello"))

    target = tmp_path / "a" / "b" / "c.txt"
    assert target.read_bytes() == b"hello"
    assert stat.S_IMODE(target.stat().st_mode) & ~0o644 == 0
    assert (tmp_path / "a").is_dir()


def test_fs_safe_write_refuses_symlink_component(tmp_path):
    """Writing through a pre-existing symlink component must be refused."""

    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()

    os.symlink(str(outside), str(root / "out"))

    with pytest.raises(UnsafeFilesystemPath):
        safe_write_fileobj(root, ("out", "evil.txt"), BytesIO(b"evil"))

    assert not (outside / "evil.txt").exists()


def test_fs_safe_write_refuses_intermediate_symlink_component(tmp_path):
    """Symlinks in intermediate path components must be refused."""

    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()

    os.symlink(str(outside), str(root / "a"))

    with pytest.raises(UnsafeFilesystemPath):
        safe_write_fileobj(root, ("a", "b", "evil.txt"), BytesIO(b"evil"))

    assert not (outside / "b").exists()


def test_fs_safe_write_refuses_symlink_leaf(tmp_path):
    """A symlink at the final component is never opened for writing."""

    root = tmp_path / "root"
    root.mkdir()
    victim = tmp_path / "victim.txt"
    victim.write_bytes(b"original")
    os.symlink(str(victim), str(root / "index.html"))

    with pytest.raises(UnsafeFilesystemPath):
        safe_write_fileobj(root, ("index.html",), BytesIO(b"evil"))

    assert victim.read_bytes() == b"original"


def test_fs_safe_makedirs_refuses_symlink_component(tmp_path):
    """Directory creation must not follow symlinks either."""

    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    os.symlink(str(outside), str(root / "a"))

    with pytest.raises(UnsafeFilesystemPath):
        safe_makedirs(root, ("a", "b"))

    assert not (outside / "b").exists()


def test_fs_safe_write_requires_a_name(tmp_path):
    """An empty target path is refused."""

    with pytest.raises(UnsafeFilesystemPath):
        safe_write_fileobj(tmp_path, (), BytesIO(b"x"))


def test_fs_safe_fails_closed_without_openat_support(tmp_path, monkeypatch):
    """If openat/dir_fd support is not available, fs_safe must fail closed."""

    monkeypatch.setattr(fs_safe_mod.os, "supports_dir_fd", set(), raising=False)
    with pytest.raises(UnsupportedFilesystemSafety):
        safe_write_fileobj(tmp_path, ("a.txt",), BytesIO(b"ok"))

    assert not (tmp_path / "a.txt").exists()


def test_fs_safe_write_file_as_directory_component_is_not_a_symlink(tmp_path):
    """A regular file in a directory position keeps its own error."""

    (tmp_path / "f").write_bytes(b"x")

    with pytest.raises(NotADirectoryError):
        safe_write_fileobj(tmp_path, ("f", "x.txt"), BytesIO(b"ok"))
