"""WSGI entry point for the Wonderelo backend."""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "wonderelo_backend.settings.dev")

application = get_wsgi_application()
