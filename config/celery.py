"""
Celery application. Reads CELERY_* keys from Django settings and
discovers tasks in the top-level `tasks` package.
"""
import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.development')

app = Celery('storefront')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks(['tasks'], related_name='email_tasks')
