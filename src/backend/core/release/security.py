"""Archive entry path validation (zip-slip protection)."""

from __future__ import annotations

import os
import posixpath
import re
from dataclasses import dataclass

from core.release.errors import DeployError, DeployErrorKind

MAX_PATH_LENGTH = 500

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


@dataclass(frozen=True)
class CleanEntryPath:
    """A validated, normalized relative path for an archive entry."""

    raw: str
    normalized: str
    parts: tuple[str, ...]

    @property
    def name(self) -> str:
        """Basename of the entry."""
        return self.parts[-1]

    @property
    def parent_parts(self) -> tuple[str, ...]:
        """All directory components (without the basename)."""
        return self.parts[:-1]


def _traversal(message: str) -> DeployError:
    return DeployError(DeployErrorKind.PATH_TRAVERSAL, message)


def _invalid(message: str) -> DeployError:
    return DeployError(DeployErrorKind.INVALID_PATH, message)


def validate_entry_path(
    raw_name: str,
    *,
    staging_root: str | os.PathLike | None = None,
    max_length: int = MAX_PATH_LENGTH,
) -> CleanEntryPath:
    """
    Validate a relative path taken from an archive entry.

    Every rule rejects the entry:
    - longer than `max_length` characters, or containing a null byte
    - absolute (leading separator or drive letter)
    - containing `..` anywhere, even when it would normalize away
    - normalizing to something outside, or equal to, `staging_root`

    Backslashes are treated as separators and leading `./` is dropped.
    No filesystem access is performed.
    """
    if not isinstance(raw_name, str) or not raw_name:
        raise _invalid("Empty path.")
    if len(raw_name) > max_length:
        raise _invalid(f"Path too long ({len(raw_name)} characters).")
    if "\x00" in raw_name:
        raise _invalid("Null byte in path.")

    path = raw_name.replace("\\", "/")
    if path.startswith("/") or _DRIVE_PREFIX.match(path):
        raise _traversal(f"Absolute path is not allowed: {raw_name!r}")
    if ".." in path:
        raise _traversal(f"Path traversal is not allowed: {raw_name!r}")

    normalized = posixpath.normpath(path)
    if normalized.startswith("..") or normalized.startswith("/"):
        raise _traversal(f"Path traversal is not allowed: {raw_name!r}")
    if normalized == ".":
        raise _invalid(f"Invalid path: {raw_name!r}")

    if staging_root is not None:
        root = os.path.abspath(os.fspath(staging_root))
        joined = os.path.normpath(os.path.join(root, normalized))
        if joined == root or os.path.commonpath([root, joined]) != root:
            raise _traversal(f"Path escapes the staging directory: {raw_name!r}")

    parts = tuple(normalized.split("/"))
    return CleanEntryPath(raw=raw_name, normalized=normalized, parts=parts)
