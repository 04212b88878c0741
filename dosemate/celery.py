import os
from celery import Celery
from django.conf import settings

# Set the default Django settings module for the 'celery' program
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'dosemate.settings')

app = Celery('dosemate')

# Using a string means the worker doesn't have to serialize the configuration
# object to child processes
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django app configs
app.autodiscover_tasks(lambda: settings.INSTALLED_APPS)

app.conf.beat_schedule = {
    # Medication tasks
    'check-low-stock-slots': {
        'task': 'medication.tasks.check_low_stock_slots',
        'schedule': 3600.0,  # Every hour
    },
}

app.conf.task_time_limit = 300
app.conf.task_soft_time_limit = 240

app.conf.task_routes = {
    'medication.tasks.check_low_stock_slots': {'queue': 'low_priority', 'priority': 3},
}

# Results expire after 1 hour
app.conf.result_expires = 3600
