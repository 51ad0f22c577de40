"""No-follow filesystem helpers for writing into a staging directory.

Every path component below the staging root is opened relative to its
parent directory with `O_NOFOLLOW`, so a symlink that appears inside the
tree (whatever created it) can never redirect a write outside of it.

Important:
- This module is designed for Linux/POSIX hosts where `openat(2)` semantics
  are available via Python's `os.open(..., dir_fd=...)`, and where `O_NOFOLLOW`
  can be relied upon to fail on symlinks.
- We fail closed if the required OS features are not available.
  A best-effort lstat/realpath walk is TOCTOU-prone and is not used here.
  See: https://lwn.net/Articles/899543/
"""

from __future__ import annotations

import errno
import os
import shutil
import stat
from typing import IO, Sequence

DIR_MODE = 0o755
FILE_MODE = 0o644


class UnsafeFilesystemPath(ValueError):
    """Raised when a staging path would traverse a symlink."""


class UnsupportedFilesystemSafety(UnsafeFilesystemPath):
    """Raised when the runtime cannot guarantee safe no-follow filesystem IO."""


def _require_nofollow_support() -> None:
    """
    Ensure we can enforce "no-follow" semantics for each path component.

    We require:
    - os.open supports dir_fd (openat)
    - os.mkdir supports dir_fd (mkdirat) for safe intermediate directory creation
    - O_NOFOLLOW is available (refuse symlink components)
    """

    supports_dir_fd = getattr(os, "supports_dir_fd", None)
    if supports_dir_fd is None or os.open not in supports_dir_fd:
        raise UnsupportedFilesystemSafety(
            "openat() support is required for safe filesystem IO."
        )
    if os.mkdir not in supports_dir_fd:
        raise UnsupportedFilesystemSafety(
            "mkdirat() support is required for safe filesystem IO."
        )
    if not hasattr(os, "O_NOFOLLOW"):
        raise UnsupportedFilesystemSafety(
            "O_NOFOLLOW is required for safe filesystem IO."
        )


def _refuse_symlink(parent_fd: int, name: str, exc: OSError) -> None:
    """
    Raise `UnsafeFilesystemPath` if `exc` was caused by a symlink at `name`.

    O_NOFOLLOW fails with ELOOP on a symlink, but combined with O_DIRECTORY
    Linux reports ENOTDIR for a symlink to a directory.
    """
    if exc.errno not in (errno.ELOOP, errno.ENOTDIR):
        return
    try:
        st = os.stat(name, dir_fd=parent_fd, follow_symlinks=False)
    except OSError:
        return
    if stat.S_ISLNK(st.st_mode):
        raise UnsafeFilesystemPath(f"Refused to follow symlink {name!r} in staging.") from exc


def _open_dir_nofollow(parent_fd: int, name: str) -> int:
    flags = os.O_RDONLY | os.O_NOFOLLOW
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY
    try:
        fd = os.open(name, flags, dir_fd=parent_fd)
    except OSError as exc:
        _refuse_symlink(parent_fd, name, exc)
        raise
    if not hasattr(os, "O_DIRECTORY"):
        try:
            if not stat.S_ISDIR(os.fstat(fd).st_mode):
                raise NotADirectoryError(name)
        except Exception:
            os.close(fd)
            raise
    return fd


def _ensure_dir_nofollow(parent_fd: int, name: str) -> int:
    """Ensure a directory exists and open it without following symlinks."""
    try:
        return _open_dir_nofollow(parent_fd, name)
    except FileNotFoundError:
        os.mkdir(name, DIR_MODE, dir_fd=parent_fd)
        return _open_dir_nofollow(parent_fd, name)


def _open_file_write_nofollow(parent_fd: int, name: str) -> int:
    flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC | os.O_NOFOLLOW
    try:
        return os.open(name, flags, FILE_MODE, dir_fd=parent_fd)
    except OSError as exc:
        _refuse_symlink(parent_fd, name, exc)
        raise


def _open_root(root: str) -> int:
    root_flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        root_flags |= os.O_DIRECTORY
    return os.open(root, root_flags)


def _walk_dirs(root_fd: int, parts: Sequence[str]) -> int:
    """Create/open each directory in `parts`; return the fd of the last one."""
    current_fd = root_fd
    try:
        for part in parts:
            next_fd = _ensure_dir_nofollow(current_fd, part)
            if current_fd != root_fd:
                os.close(current_fd)
            current_fd = next_fd
    except BaseException:
        if current_fd != root_fd:
            os.close(current_fd)
        raise
    return current_fd


def _translate_symlink_error(exc: OSError) -> None:
    # O_NOFOLLOW on a symlink fails with ELOOP.
    if exc.errno == errno.ELOOP:
        raise UnsafeFilesystemPath("Refused to follow a symlink in staging.") from exc


def safe_makedirs(root: str | os.PathLike, parts: Sequence[str]) -> None:
    """Create `root/parts...` (and ancestors) without following symlinks."""

    _require_nofollow_support()
    root_fd = _open_root(os.fspath(root))
    try:
        dir_fd = _walk_dirs(root_fd, parts)
        if dir_fd != root_fd:
            os.close(dir_fd)
    except OSError as exc:
        _translate_symlink_error(exc)
        raise
    finally:
        os.close(root_fd)


def safe_write_fileobj(
    root: str | os.PathLike,
    parts: Sequence[str],
    fileobj: IO[bytes],
    *,
    chunk_size: int = 1024 * 1024,
) -> None:
    """Write a file-like object to `root/parts...` without following symlinks."""

    if not parts:
        raise UnsafeFilesystemPath("Invalid target path.")
    _require_nofollow_support()

    root_fd = _open_root(os.fspath(root))
    current_fd = root_fd
    try:
        current_fd = _walk_dirs(root_fd, parts[:-1])
        fd = _open_file_write_nofollow(current_fd, parts[-1])
        with os.fdopen(fd, "wb") as out_fp:
            shutil.copyfileobj(fileobj, out_fp, length=chunk_size)
    except OSError as exc:
        _translate_symlink_error(exc)
        raise
    finally:
        try:
            if current_fd != root_fd:
                os.close(current_fd)
        finally:
            os.close(root_fd)
