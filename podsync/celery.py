import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "podsync.settings")
os.environ.setdefault('DJANGO_CONFIGURATION', 'Prod')

import configurations
configurations.setup()

celery = Celery("podsync.celery")
celery.config_from_object("django.conf:settings", namespace="CELERY")
celery.autodiscover_tasks()

celery.conf.beat_schedule = {
    # expire, renew and poll in one sweep, see podsync.data.tasks.reconcile
    "reconcile-hourly": {
        "task": "podsync.data.tasks.reconcile",
        "schedule": crontab(minute=0),
    },
}
