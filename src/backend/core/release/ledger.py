"""Deploy ledger: the record of every upload attempt.

The pipeline only relies on the `DeployLedger` protocol. `ModelDeployLedger`
stores records with the Django ORM.
"""

from __future__ import annotations

from logging import getLogger
from typing import Protocol

from django.db import transaction
from django.utils import timezone

from core import models
from core.release.errors import DeployError

logger = getLogger(__name__)


class DeployTransitionError(RuntimeError):
    """Raised when finalizing a deploy that is no longer pending."""


class DeployLedger(Protocol):
    """State-transition contract: pending -> success | failed, exactly once."""

    def create_pending(self, *, site_id, uploader_id, filename: str): ...

    def mark_succeeded(self, deploy): ...

    def mark_failed(self, deploy, error: DeployError | str): ...


class ModelDeployLedger:
    """`DeployLedger` backed by the `Deploy` model."""

    def create_pending(self, *, site_id, uploader_id, filename: str) -> models.Deploy:
        """
        Create the pending record.

        `durable=True` refuses to run inside an outer transaction: the row
        must be committed before any filesystem work starts.
        """
        with transaction.atomic(durable=True):
            return models.Deploy.objects.create(
                site_id=site_id,
                uploader_id=uploader_id,
                filename=filename,
                status=models.DeployStatusChoices.PENDING,
            )

    def _finalize(
        self,
        deploy: models.Deploy,
        *,
        status: str,
        error_code: str = "",
        error_message: str = "",
    ) -> models.Deploy:
        updated_at = timezone.now()
        updated = models.Deploy.objects.filter(
            pk=deploy.pk, status=models.DeployStatusChoices.PENDING
        ).update(
            status=status,
            error_code=error_code,
            error_message=error_message,
            updated_at=updated_at,
        )
        if updated != 1:
            raise DeployTransitionError(
                f"Deploy {deploy.pk} is not pending; cannot mark it {status}."
            )
        deploy.status = status
        deploy.error_code = error_code
        deploy.error_message = error_message
        deploy.updated_at = updated_at
        return deploy

    def mark_succeeded(self, deploy: models.Deploy) -> models.Deploy:
        return self._finalize(deploy, status=models.DeployStatusChoices.SUCCESS)

    def mark_failed(self, deploy: models.Deploy, error: DeployError | str) -> models.Deploy:
        if isinstance(error, DeployError):
            code, message = error.kind.value, error.detail
        else:
            code, message = "", str(error)
        return self._finalize(
            deploy,
            status=models.DeployStatusChoices.FAILED,
            error_code=code,
            error_message=message,
        )

    def list_for_site(self, site_id, limit: int = 20) -> list[models.Deploy]:
        """Most recent deploys of a site, newest first."""
        return list(
            models.Deploy.objects.filter(site_id=site_id).order_by("-created_at")[:limit]
        )

    def last_successful(self, site_id) -> models.Deploy | None:
        return (
            models.Deploy.objects.filter(
                site_id=site_id, status=models.DeployStatusChoices.SUCCESS
            )
            .order_by("-created_at")
            .first()
        )

    def count_for_site(self, site_id) -> int:
        return models.Deploy.objects.filter(site_id=site_id).count()
