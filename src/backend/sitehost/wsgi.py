"""WSGI entry point for the sitehost project."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "sitehost.settings")

application = get_wsgi_application()
