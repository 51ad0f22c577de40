"""Materialize archive entries into a site's staging slot."""

from __future__ import annotations

import shutil
from logging import getLogger
from pathlib import Path
from typing import Iterable

from core.release.errors import DeployError, DeployErrorKind
from core.release.fs_safe import (
    DIR_MODE,
    UnsafeFilesystemPath,
    UnsupportedFilesystemSafety,
    safe_makedirs,
    safe_write_fileobj,
)
from core.release.limits import DeployLimits, get_deploy_limits
from core.release.readers import ArchiveEntry, EntryType, LimitedReader
from core.release.security import validate_entry_path

logger = getLogger(__name__)


def purge_directory(path: Path) -> None:
    """Remove `path` recursively if it exists."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


class ReleaseStager:
    """
    Write validated archive entries into a fresh staging directory.

    Staging is all-or-nothing: on any failure the staging directory is
    removed before the error propagates. Per-file sizes are enforced by the
    archive drivers (declared size and capped content); the stager bounds the
    total number of bytes written for the whole archive.
    """

    def __init__(self, *, limits: DeployLimits | None = None):
        self.limits = limits or get_deploy_limits()

    def stage(self, entries: Iterable[ArchiveEntry], staging_dir: Path) -> Path:
        """Populate `staging_dir` from `entries` and return it."""
        try:
            # Leftovers of a crashed attempt are never reused.
            purge_directory(staging_dir)
            staging_dir.mkdir(mode=DIR_MODE)
        except OSError as exc:
            raise DeployError(
                DeployErrorKind.EXTRACTION_IO,
                f"Could not prepare staging directory {staging_dir}: {exc}",
            ) from exc

        files = 0
        total = 0
        try:
            for entry in entries:
                written = self._stage_entry(
                    entry, staging_dir, budget=self.limits.max_total_size - total
                )
                if written is not None:
                    files += 1
                    total += written
        except Exception:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise

        logger.info(
            "release_stage: done (staging=%s files=%s bytes=%s)", staging_dir, files, total
        )
        return staging_dir

    def _total_too_large(self, name: str) -> DeployError:
        return DeployError(
            DeployErrorKind.ARCHIVE_TOO_LARGE,
            f"Uncompressed content exceeds {self.limits.max_total_size} bytes "
            f"(at {name}).",
        )

    def _stage_entry(
        self, entry: ArchiveEntry, staging_dir: Path, *, budget: int
    ) -> int | None:
        """Write one entry; return the number of bytes written for a file."""
        if entry.entry_type == EntryType.SYMLINK:
            raise DeployError(DeployErrorKind.SYMLINK_REJECTED, f"Link entry: {entry.path!r}")

        clean = validate_entry_path(
            entry.path,
            staging_root=staging_dir,
            max_length=self.limits.max_path_length,
        )

        if entry.entry_type == EntryType.OTHER:
            logger.info("release_stage: skipping special entry %r", clean.normalized)
            return None

        try:
            if entry.entry_type == EntryType.DIRECTORY:
                safe_makedirs(staging_dir, clean.parts)
                return None

            if entry.size > budget:
                raise self._total_too_large(clean.normalized)
            with entry.open() as member_fp:
                capped = LimitedReader(
                    member_fp,
                    budget,
                    name=clean.normalized,
                    kind=DeployErrorKind.ARCHIVE_TOO_LARGE,
                )
                safe_write_fileobj(staging_dir, clean.parts, capped)
        except UnsupportedFilesystemSafety as exc:
            raise DeployError(DeployErrorKind.EXTRACTION_IO, str(exc)) from exc
        except UnsafeFilesystemPath as exc:
            raise DeployError(
                DeployErrorKind.PATH_TRAVERSAL, f"{clean.normalized}: {exc}"
            ) from exc
        except OSError as exc:
            raise DeployError(
                DeployErrorKind.EXTRACTION_IO, f"Could not write {clean.normalized}: {exc}"
            ) from exc
        return capped.consumed
