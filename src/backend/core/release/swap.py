"""Atomic slot rotation for site releases.

Activation: previous is discarded, current becomes previous, staging
becomes current. Rollback swaps current and previous through a temporary
slot. Each step is a single directory substitution, so `current` is never
observed partially written.
"""

from __future__ import annotations

from logging import getLogger
from pathlib import Path

from core.release.errors import DeployError, DeployErrorKind
from core.release.slots import DirectorySubstitution, RenameSubstitution, SiteReleaseArea

logger = getLogger(__name__)


class ReleaseSwapper:
    """Activate staged releases and roll back to the previous one."""

    def __init__(self, substitution: DirectorySubstitution | None = None):
        self.fs = substitution or RenameSubstitution()

    def has_current(self, area: SiteReleaseArea) -> bool:
        return self.fs.exists(area.current)

    def has_previous(self, area: SiteReleaseArea) -> bool:
        return self.fs.exists(area.previous)

    def _discard_quietly(self, path: Path) -> None:
        try:
            self.fs.discard(path)
        except OSError:
            logger.exception("release_swap: could not discard slot (path=%s)", path)

    def activate(self, area: SiteReleaseArea) -> None:
        """
        Make the staging slot live.

        Order matters: discard previous, move current to previous, move
        staging to current. If the last step fails, previous is moved back
        to current and the failure is still raised. Staging never survives a
        failed activation.
        """
        if not self.fs.exists(area.staging):
            raise DeployError(
                DeployErrorKind.ACTIVATION_FAILED, f"Nothing staged in {area.staging}"
            )

        try:
            self.fs.discard(area.previous)
        except OSError as exc:
            self._discard_quietly(area.staging)
            raise DeployError(
                DeployErrorKind.ACTIVATION_FAILED,
                f"Could not discard previous release: {exc}",
            ) from exc

        backed_up = False
        if self.fs.exists(area.current):
            try:
                self.fs.substitute(area.current, area.previous)
            except OSError as exc:
                self._discard_quietly(area.staging)
                raise DeployError(
                    DeployErrorKind.ACTIVATION_FAILED,
                    f"Could not back up current release: {exc}",
                ) from exc
            backed_up = True

        try:
            self.fs.substitute(area.staging, area.current)
        except OSError as exc:
            if backed_up:
                self._restore_current(area)
            self._discard_quietly(area.staging)
            raise DeployError(
                DeployErrorKind.ACTIVATION_FAILED,
                f"Could not activate staged release: {exc}",
            ) from exc

        logger.info(
            "release_swap: activated (site_root=%s backed_up=%s)", area.root, backed_up
        )

    def _restore_current(self, area: SiteReleaseArea) -> None:
        if self.fs.exists(area.current) or not self.fs.exists(area.previous):
            return
        try:
            self.fs.substitute(area.previous, area.current)
        except OSError:
            logger.exception(
                "release_swap: restore of current release failed (site_root=%s)", area.root
            )
        else:
            logger.warning("release_swap: restored current release (site_root=%s)", area.root)

    def rollback(self, area: SiteReleaseArea) -> None:
        """
        Swap current and previous.

        A failure to relabel the rotated-out release as previous is tolerated:
        the live site is already correct, only the history depth is lost.
        """
        if not self.fs.exists(area.previous):
            raise DeployError(DeployErrorKind.NO_PREVIOUS_VERSION)

        try:
            self.fs.discard(area.rollback_temp)
        except OSError as exc:
            raise DeployError(
                DeployErrorKind.ACTIVATION_FAILED,
                f"Could not clear rollback slot: {exc}",
            ) from exc

        if not self.fs.exists(area.current):
            # Only previous survived an interrupted operation: promote it.
            try:
                self.fs.substitute(area.previous, area.current)
            except OSError as exc:
                raise DeployError(
                    DeployErrorKind.ACTIVATION_FAILED,
                    f"Could not restore previous release: {exc}",
                ) from exc
            logger.info("release_swap: promoted previous release (site_root=%s)", area.root)
            return

        try:
            self.fs.substitute(area.current, area.rollback_temp)
        except OSError as exc:
            raise DeployError(
                DeployErrorKind.ACTIVATION_FAILED,
                f"Could not move current release aside: {exc}",
            ) from exc

        try:
            self.fs.substitute(area.previous, area.current)
        except OSError as exc:
            try:
                self.fs.substitute(area.rollback_temp, area.current)
            except OSError:
                logger.exception(
                    "release_swap: restore after failed rollback failed (site_root=%s)",
                    area.root,
                )
            raise DeployError(
                DeployErrorKind.ACTIVATION_FAILED,
                f"Could not restore previous release: {exc}",
            ) from exc

        try:
            self.fs.substitute(area.rollback_temp, area.previous)
        except OSError:
            logger.warning(
                "release_swap: could not keep rolled-back release as previous "
                "(site_root=%s)",
                area.root,
                exc_info=True,
            )
            self._discard_quietly(area.rollback_temp)

        logger.info("release_swap: rolled back (site_root=%s)", area.root)
