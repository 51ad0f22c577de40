"""Site deploy and rollback entry points.

A deploy runs strictly in this order:

1. the pending ledger record is committed;
2. the declared size and the filename extension are checked, without
   reading the upload;
3. under the site's gate, the upload is stored in the archive store, its
   entries are staged, and the staging slot is activated;
4. the ledger record is finalized as success or failed.
"""

from __future__ import annotations

from logging import getLogger
from pathlib import Path
from typing import IO

from django.conf import settings

from core.release.errors import DeployError, DeployErrorKind
from core.release.ledger import DeployLedger, ModelDeployLedger
from core.release.limits import DeployLimits, get_deploy_limits
from core.release.locks import SiteLockTimeout, site_locks
from core.release.readers import get_archive_reader_class
from core.release.slots import SiteReleaseArea
from core.release.source import ArchiveSource
from core.release.stage import ReleaseStager
from core.release.swap import ReleaseSwapper

logger = getLogger(__name__)


def _sites_base_dir(base_dir: str | Path | None) -> Path:
    return Path(base_dir or settings.SITES_BASE_DIR)


def _lock_timeout() -> float:
    return float(getattr(settings, "DEPLOY_LOCK_TIMEOUT", -1))


def deploy_site_archive(  # noqa: PLR0913
    *,
    site_id,
    uploader_id,
    filename: str,
    stream: IO[bytes],
    declared_size: int,
    ledger: DeployLedger | None = None,
    base_dir: str | Path | None = None,
    limits: DeployLimits | None = None,
):
    """
    Replace the published content of a site with an uploaded archive.

    Returns the finalized ledger record on success. On failure, raises
    `DeployError` whose `deploy` attribute holds the record marked failed.
    """
    # pylint: disable=too-many-arguments
    ledger = ledger or ModelDeployLedger()
    limits = limits or get_deploy_limits()
    base = _sites_base_dir(base_dir)

    deploy = ledger.create_pending(
        site_id=site_id, uploader_id=uploader_id, filename=filename
    )
    try:
        _run_deploy(
            site_id=site_id,
            filename=filename,
            stream=stream,
            declared_size=declared_size,
            base=base,
            limits=limits,
        )
    except DeployError as exc:
        exc.deploy = ledger.mark_failed(deploy, exc)
        logger.warning(
            "site_deploy: failed (site_id=%s filename=%s kind=%s detail=%s)",
            site_id,
            filename,
            exc.kind.value,
            exc.detail,
        )
        raise
    except Exception as exc:  # noqa: BLE001
        ledger.mark_failed(deploy, f"Unexpected error: {exc!r}")
        logger.exception(
            "site_deploy: failed unexpectedly (site_id=%s filename=%s)", site_id, filename
        )
        raise

    deploy = ledger.mark_succeeded(deploy)
    logger.info("site_deploy: done (site_id=%s filename=%s)", site_id, filename)
    return deploy


def _run_deploy(  # noqa: PLR0913
    *,
    site_id,
    filename: str,
    stream: IO[bytes],
    declared_size: int,
    base: Path,
    limits: DeployLimits,
) -> None:
    # pylint: disable=too-many-arguments
    if declared_size is not None and declared_size > limits.max_archive_size:
        raise DeployError(
            DeployErrorKind.ARCHIVE_TOO_LARGE,
            f"Declared size {declared_size} exceeds {limits.max_archive_size} bytes.",
        )
    reader_class = get_archive_reader_class(filename)
    area = SiteReleaseArea.for_site(base, site_id)

    try:
        with site_locks.hold(site_id, base_dir=base, timeout=_lock_timeout()):
            try:
                area.ensure()
            except OSError as exc:
                raise DeployError(
                    DeployErrorKind.EXTRACTION_IO,
                    f"Could not prepare site directory {area.root}: {exc}",
                ) from exc
            source = ArchiveSource.buffered(
                stream,
                path=area.archive_path(filename),
                max_size=limits.max_archive_size,
            )
            reader = reader_class(source, limits=limits)
            ReleaseStager(limits=limits).stage(reader.entries(), area.staging)
            ReleaseSwapper().activate(area)
    except SiteLockTimeout as exc:
        raise DeployError(DeployErrorKind.SITE_BUSY, str(exc)) from exc


def rollback_site(*, site_id, base_dir: str | Path | None = None) -> None:
    """
    Make the previous release of a site live again.

    Works from the filesystem alone: no deploy record is required.
    """
    base = _sites_base_dir(base_dir)
    area = SiteReleaseArea.for_site(base, site_id)
    try:
        with site_locks.hold(site_id, base_dir=base, timeout=_lock_timeout()):
            ReleaseSwapper().rollback(area)
    except SiteLockTimeout as exc:
        raise DeployError(DeployErrorKind.SITE_BUSY, str(exc)) from exc
    except DeployError as exc:
        logger.warning(
            "site_rollback: failed (site_id=%s kind=%s detail=%s)",
            site_id,
            exc.kind.value,
            exc.detail,
        )
        raise
    logger.info("site_rollback: done (site_id=%s)", site_id)


def get_release_state(*, site_id, base_dir: str | Path | None = None) -> dict:
    """Report which slots of a site currently exist."""
    area = SiteReleaseArea.for_site(_sites_base_dir(base_dir), site_id)
    swapper = ReleaseSwapper()
    return {
        "has_current": swapper.has_current(area),
        "has_previous": swapper.has_previous(area),
    }
