"""Per-site release area layout and the directory substitution capability."""

from __future__ import annotations

import errno
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

CURRENT = "current"
PREVIOUS = "previous"
STAGING = "staging"
ARCHIVE_STORE = "archive-store"
ROLLBACK_TEMP = "rollback-tmp"


@dataclass(frozen=True)
class SiteReleaseArea:
    """Named slots of one site: {base}/{site_id}/{current,previous,staging,...}."""

    root: Path

    @classmethod
    def for_site(cls, base_dir: str | os.PathLike, site_id) -> SiteReleaseArea:
        site_key = str(site_id)
        if not site_key or site_key in {".", ".."} or "/" in site_key or "\\" in site_key:
            raise ValueError(f"Invalid site identifier: {site_key!r}")
        return cls(root=Path(base_dir) / site_key)

    @property
    def current(self) -> Path:
        return self.root / CURRENT

    @property
    def previous(self) -> Path:
        return self.root / PREVIOUS

    @property
    def staging(self) -> Path:
        return self.root / STAGING

    @property
    def archive_store(self) -> Path:
        return self.root / ARCHIVE_STORE

    @property
    def rollback_temp(self) -> Path:
        return self.root / ROLLBACK_TEMP

    def ensure(self) -> None:
        """Create the site root and the archive store."""
        self.archive_store.mkdir(parents=True, exist_ok=True)

    def archive_path(self, filename: str, *, now: datetime | None = None) -> Path:
        """Path for a retained upload: `{timestamp}_{basename}` in the archive store."""
        now = now or datetime.now(timezone.utc)
        basename = os.path.basename(filename.replace("\\", "/")) or "archive"
        basename = basename.replace("\x00", "")
        return self.archive_store / f"{now.strftime('%Y%m%dT%H%M%S%fZ')}_{basename}"


class DirectorySubstitution(Protocol):
    """
    Atomic directory substitution.

    `substitute(source, target)` must make `source`'s content visible under
    `target` in one step, leaving `source` absent; `target` must not exist.
    """

    def exists(self, path: Path) -> bool: ...

    def substitute(self, source: Path, target: Path) -> None: ...

    def discard(self, path: Path) -> None: ...


class RenameSubstitution:
    """POSIX implementation: `rename(2)` within one filesystem."""

    def exists(self, path: Path) -> bool:
        return os.path.lexists(path)

    def substitute(self, source: Path, target: Path) -> None:
        if os.path.lexists(target):
            raise FileExistsError(errno.EEXIST, "Target slot already exists", str(target))
        os.rename(source, target)

    def discard(self, path: Path) -> None:
        if os.path.islink(path) or os.path.isfile(path):
            os.unlink(path)
        elif os.path.isdir(path):
            shutil.rmtree(path)
