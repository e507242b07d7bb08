"""
WSGI config for the videoconverter project.

The push stream holds a worker for the life of each subscription, so run this
under a threaded server (e.g. gunicorn --threads) rather than a single-threaded one.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'videoconverter.settings')

application = get_wsgi_application()
