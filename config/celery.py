"""
Celery application for background order work.

Run a worker and the beat scheduler with:
    celery -A config worker -l info
    celery -A config beat -l info
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('freshmarket')

# All CELERY_* Django settings configure the app
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
