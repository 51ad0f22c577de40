"""Roll a site back to its previous release from the shell."""

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from core import models
from core.release.deploy import rollback_site
from core.release.errors import DeployError


class Command(BaseCommand):
    """Swap the current and previous releases of a site."""

    help = __doc__

    def add_arguments(self, parser):
        parser.add_argument("site_id", help="UUID of the site to roll back")

    def handle(self, *args, **options):
        site_id = options["site_id"]
        try:
            site = models.Site.objects.get(pk=site_id)
        except (models.Site.DoesNotExist, ValidationError) as exc:
            raise CommandError(f"Site {site_id} not found.") from exc

        try:
            rollback_site(site_id=site.id)
        except DeployError as exc:
            raise CommandError(exc.public_message) from exc

        self.stdout.write(self.style.SUCCESS(f"Site {site.name} rolled back."))
