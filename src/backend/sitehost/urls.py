"""URL configuration for the sitehost project."""

from django.urls import include, path

urlpatterns = [
    path("api/v1.0/", include("core.urls")),
]
