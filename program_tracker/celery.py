import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'program_tracker.settings')

app = Celery('program_tracker')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
