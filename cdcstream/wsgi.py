"""
WSGI config for the cdcstream project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'cdcstream.settings')

application = get_wsgi_application()
