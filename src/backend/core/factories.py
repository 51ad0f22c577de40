"""Core application factories."""

from django.contrib.auth import get_user_model

import factory
from factory.django import DjangoModelFactory

from core import models


class UserFactory(DjangoModelFactory):
    """A factory to create users for testing purposes."""

    class Meta:
        model = get_user_model()
        django_get_or_create = ("username",)

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.Faker("email")
    password = factory.django.Password("password")


class SiteFactory(DjangoModelFactory):
    """A factory to create sites for testing purposes."""

    class Meta:
        model = models.Site

    name = factory.Sequence(lambda n: f"site-{n}.example.com")


class DeployFactory(DjangoModelFactory):
    """A factory to create deploy records for testing purposes."""

    class Meta:
        model = models.Deploy

    site = factory.SubFactory(SiteFactory)
    uploader = factory.SubFactory(UserFactory)
    filename = "site.zip"
    status = models.DeployStatusChoices.PENDING
