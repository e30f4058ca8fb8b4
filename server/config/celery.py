import os
from celery import Celery
from celery.schedules import crontab

# Set default Django settings
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('hires')

# Load configuration from Django settings
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from installed apps
app.autodiscover_tasks()

# Periodic tasks schedule
app.conf.beat_schedule = {
    'cleanup-expired-downloads': {
        'task': 'hires.tasks.cleanup_expired_downloads',
        'schedule': crontab(minute=0),  # Hourly
    },
    'cleanup-failed-jobs': {
        'task': 'hires.tasks.cleanup_failed_jobs',
        'schedule': crontab(hour=3, minute=0),  # Daily at 3 AM UTC
    },
    'cleanup-abandoned-jobs': {
        'task': 'hires.tasks.cleanup_abandoned_jobs',
        'schedule': crontab(hour=3, minute=30),  # Daily at 3:30 AM UTC
    },
}
