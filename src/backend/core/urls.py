"""URL configuration for the core app."""

from django.urls import path

from core.api.views_deploys import SiteDeployView, SiteReleaseView, SiteRollbackView

urlpatterns = [
    path("sites/<uuid:site_id>/deploys/", SiteDeployView.as_view(), name="site-deploys"),
    path("sites/<uuid:site_id>/rollback/", SiteRollbackView.as_view(), name="site-rollback"),
    path("sites/<uuid:site_id>/release/", SiteReleaseView.as_view(), name="site-release"),
]
