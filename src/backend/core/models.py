"""Declare and configure the models for the sitehost core application."""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _


class BaseModel(models.Model):
    """
    Serves as an abstract base model for other models.

    Gives every record a UUID primary key and creation/update timestamps.
    """

    id = models.UUIDField(
        verbose_name=_("id"),
        help_text=_("primary key for the record as UUID"),
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )
    created_at = models.DateTimeField(
        verbose_name=_("created on"),
        help_text=_("date and time at which a record was created"),
        auto_now_add=True,
        editable=False,
    )
    updated_at = models.DateTimeField(
        verbose_name=_("updated on"),
        help_text=_("date and time at which a record was last updated"),
        auto_now=True,
        editable=False,
    )

    class Meta:
        abstract = True


class Site(BaseModel):
    """A static website hosted on this machine."""

    name = models.CharField(_("name"), max_length=253, unique=True)

    class Meta:
        db_table = "sitehost_site"
        verbose_name = _("Site")
        verbose_name_plural = _("Sites")
        ordering = ("name",)

    def __str__(self):
        return self.name


class DeployStatusChoices(models.TextChoices):
    """Lifecycle of a deploy attempt. Only pending -> success|failed is allowed."""

    PENDING = "pending", _("Pending")
    SUCCESS = "success", _("Success")
    FAILED = "failed", _("Failed")


class Deploy(BaseModel):
    """One upload attempt of a site archive."""

    site = models.ForeignKey(Site, on_delete=models.CASCADE, related_name="deploys")
    uploader = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="deploys",
    )
    filename = models.CharField(_("filename"), max_length=255)
    status = models.CharField(
        _("status"),
        max_length=10,
        choices=DeployStatusChoices.choices,
        default=DeployStatusChoices.PENDING,
    )
    error_code = models.CharField(_("error code"), max_length=64, blank=True, default="")
    error_message = models.TextField(_("error message"), blank=True, default="")

    class Meta:
        db_table = "sitehost_deploy"
        verbose_name = _("Deploy")
        verbose_name_plural = _("Deploys")
        ordering = ("-created_at",)

    def __str__(self):
        return f"{self.filename} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        """Return True once the deploy has been finalized."""
        return self.status != DeployStatusChoices.PENDING
