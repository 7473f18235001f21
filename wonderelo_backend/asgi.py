"""
ASGI entry point for the Wonderelo backend.

The default settings module is the development configuration; deployments
override DJANGO_SETTINGS_MODULE.
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "wonderelo_backend.settings.dev")

application = get_asgi_application()
