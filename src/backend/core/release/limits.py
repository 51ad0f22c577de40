"""Site deploy limits.

These limits protect the host from zip-bombs, path traversal attempts and
oversized uploads, and keep a single deploy's disk usage bounded.

All limits are configurable via environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    """Read an integer env var, returning `default` on missing/invalid."""

    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class DeployLimits:
    """Resource limits applied to every uploaded site archive."""

    max_archive_size: int
    max_total_size: int
    max_file_size: int
    max_files: int
    max_path_length: int


def get_deploy_limits() -> DeployLimits:
    """Read deploy limits from environment variables."""

    return DeployLimits(
        max_archive_size=_env_int("DEPLOY_MAX_ARCHIVE_SIZE", 100 * 1024**2),  # 100 MiB
        max_total_size=_env_int("DEPLOY_MAX_TOTAL_SIZE", 1024**3),  # 1 GiB uncompressed
        max_file_size=_env_int("DEPLOY_MAX_FILE_SIZE", 10 * 1024**2),  # 10 MiB
        max_files=_env_int("DEPLOY_MAX_FILES", 10_000),
        max_path_length=_env_int("DEPLOY_MAX_PATH_LENGTH", 500),
    )
