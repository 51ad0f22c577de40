"""Site deploy API views."""

from __future__ import annotations

from django.shortcuts import get_object_or_404

from rest_framework import permissions, status
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from core import models
from core.api.serializers_deploys import (
    DeployListQuerySerializer,
    DeploySerializer,
    DeployUploadSerializer,
    SiteReleaseStateSerializer,
)
from core.release.deploy import deploy_site_archive, get_release_state, rollback_site
from core.release.errors import DeployError, DeployErrorKind
from core.release.ledger import ModelDeployLedger


def _status_for(error: DeployError) -> int:
    if error.kind.is_validation:
        return status.HTTP_400_BAD_REQUEST
    if error.kind in {DeployErrorKind.NO_PREVIOUS_VERSION, DeployErrorKind.SITE_BUSY}:
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_payload(error: DeployError) -> dict:
    # Raw details may contain filesystem paths; they stay in the ledger.
    payload = {"detail": error.public_message, "code": error.public_code}
    if error.deploy is not None:
        payload["deploy"] = DeploySerializer(error.deploy).data
    return payload


class SiteDeployView(APIView):
    """Upload a site archive, or list the deploy history of a site."""

    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [MultiPartParser, FormParser]

    def get(self, request, site_id):
        """Return the most recent deploys of a site."""

        site = get_object_or_404(models.Site, pk=site_id)
        query = DeployListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        deploys = ModelDeployLedger().list_for_site(
            site.id, limit=query.validated_data["limit"]
        )
        return Response(DeploySerializer(deploys, many=True).data)

    def post(self, request, site_id):
        """Deploy the uploaded archive synchronously."""

        site = get_object_or_404(models.Site, pk=site_id)
        serializer = DeployUploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        upload = serializer.validated_data["file"]

        try:
            deploy = deploy_site_archive(
                site_id=site.id,
                uploader_id=request.user.id,
                filename=upload.name,
                stream=upload,
                declared_size=upload.size,
            )
        except DeployError as exc:
            return Response(_error_payload(exc), status=_status_for(exc))
        finally:
            upload.close()

        return Response(DeploySerializer(deploy).data, status=status.HTTP_201_CREATED)


class SiteRollbackView(APIView):
    """Make the previous release of a site live again."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, site_id):
        """Swap the current and previous releases."""

        site = get_object_or_404(models.Site, pk=site_id)
        try:
            rollback_site(site_id=site.id)
        except DeployError as exc:
            return Response(_error_payload(exc), status=_status_for(exc))
        return Response({"state": "rolled_back"}, status=status.HTTP_200_OK)


class SiteReleaseView(APIView):
    """Report which release slots of a site exist."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, site_id):
        """Return `has_current` and `has_previous`."""

        site = get_object_or_404(models.Site, pk=site_id)
        serializer = SiteReleaseStateSerializer(get_release_state(site_id=site.id))
        return Response(serializer.data, status=status.HTTP_200_OK)
