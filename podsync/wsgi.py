"""
WSGI config for podsync project.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import os

from configurations.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "podsync.settings")
os.environ.setdefault('DJANGO_CONFIGURATION', 'Prod')

application = get_wsgi_application()
