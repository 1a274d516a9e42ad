"""
Celery configuration for the cdcstream project
"""
import os
from celery import Celery
from celery.schedules import crontab

# Set default Django settings
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'cdcstream.settings')

app = Celery('cdcstream')

# Load config from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()

app.conf.beat_schedule = {
    # Hard-delete soft-deleted pipelines whose backup window has passed
    'purge-expired-pipelines': {
        'task': 'pipelines.tasks.purge_expired_pipelines',
        'schedule': crontab(minute=0),  # Every hour
    },
}
