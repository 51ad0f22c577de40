"""Serializers for the site deploy API."""

from __future__ import annotations

from rest_framework import serializers

from core import models

# pylint: disable=abstract-method


class DeploySerializer(serializers.ModelSerializer):
    """Serialize a deploy record."""

    class Meta:
        model = models.Deploy
        fields = [
            "id",
            "site",
            "uploader",
            "filename",
            "status",
            "error_code",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class DeployUploadSerializer(serializers.Serializer):
    """Validate an archive upload request."""

    file = serializers.FileField(allow_empty_file=True, use_url=False)


class DeployListQuerySerializer(serializers.Serializer):
    """Validate query parameters of the deploy history endpoint."""

    limit = serializers.IntegerField(required=False, default=20, min_value=1, max_value=200)


class SiteReleaseStateSerializer(serializers.Serializer):
    """Serialize which release slots of a site exist."""

    has_current = serializers.BooleanField()
    has_previous = serializers.BooleanField()
