"""
WSGI config for the medstage project.

It exposes the WSGI callable as a module-level variable named ``application``.
Realtime notifications need the ASGI entry point (see ``medstage.asgi``);
a WSGI deployment still persists every notification, it only loses the
websocket push.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

# Set the default settings module for the 'django' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'medstage.settings')

# Obtain the WSGI application for use by the server
application = get_wsgi_application()
