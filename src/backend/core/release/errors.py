"""Typed errors for the site release pipeline.

Every failure of a deploy or rollback is reported as a `DeployError` whose
`kind` belongs to the closed `DeployErrorKind` enum, so callers can branch on
it exhaustively. `detail` keeps the raw cause (it may mention filesystem
paths and is only meant for the deploy ledger and logs); `public_message` is
safe to show to the uploader.
"""

from __future__ import annotations

import enum


class DeployErrorKind(str, enum.Enum):
    """Failure kinds of the release pipeline."""

    ARCHIVE_TOO_LARGE = "archive_too_large"
    FILE_TOO_LARGE = "file_too_large"
    TOO_MANY_ENTRIES = "too_many_entries"
    UNSUPPORTED_FORMAT = "unsupported_format"
    PATH_TRAVERSAL = "path_traversal"
    INVALID_PATH = "invalid_path"
    SYMLINK_REJECTED = "symlink_rejected"
    EXTRACTION_IO = "extraction_io"
    ACTIVATION_FAILED = "activation_failed"
    NO_PREVIOUS_VERSION = "no_previous_version"
    SITE_BUSY = "site_busy"

    @property
    def is_validation(self) -> bool:
        """True for kinds caused by the uploaded archive itself."""
        return self in _VALIDATION_KINDS


_VALIDATION_KINDS = frozenset(
    {
        DeployErrorKind.ARCHIVE_TOO_LARGE,
        DeployErrorKind.FILE_TOO_LARGE,
        DeployErrorKind.TOO_MANY_ENTRIES,
        DeployErrorKind.UNSUPPORTED_FORMAT,
        DeployErrorKind.PATH_TRAVERSAL,
        DeployErrorKind.INVALID_PATH,
        DeployErrorKind.SYMLINK_REJECTED,
    }
)

PUBLIC_MESSAGES: dict[DeployErrorKind, str] = {
    DeployErrorKind.ARCHIVE_TOO_LARGE: "Archive is too large",
    DeployErrorKind.FILE_TOO_LARGE: "A file in the archive is too large",
    DeployErrorKind.TOO_MANY_ENTRIES: "Too many files in archive",
    DeployErrorKind.UNSUPPORTED_FORMAT: "Unsupported archive format",
    DeployErrorKind.PATH_TRAVERSAL: "Invalid file paths in archive",
    DeployErrorKind.INVALID_PATH: "Invalid file paths in archive",
    DeployErrorKind.SYMLINK_REJECTED: "Symlinks are not allowed in archive",
    DeployErrorKind.EXTRACTION_IO: "Could not extract archive",
    DeployErrorKind.ACTIVATION_FAILED: "Could not activate the new release",
    DeployErrorKind.NO_PREVIOUS_VERSION: "No previous version available",
    DeployErrorKind.SITE_BUSY: "Another deploy is in progress for this site",
}


class DeployError(Exception):
    """Raised when a deploy or rollback fails."""

    def __init__(self, kind: DeployErrorKind, detail: str = "") -> None:
        self.kind = DeployErrorKind(kind)
        self.detail = detail or PUBLIC_MESSAGES[self.kind]
        # Set by the pipeline once the failure has been written to the ledger.
        self.deploy = None
        super().__init__(self.detail)

    def __repr__(self) -> str:
        return f"DeployError({self.kind.value!r}, {self.detail!r})"

    @property
    def public_message(self) -> str:
        """Caller-facing summary, never containing filesystem paths."""
        return PUBLIC_MESSAGES[self.kind]

    @property
    def public_code(self) -> str:
        return f"deploy.{self.kind.value}"
