"""Celery application playing the notification daemon for the local app.

Start a worker + beat with:
    celery -A app.celery_app worker -B -Q notifications -l info --concurrency=1
"""

from celery import Celery
from celery.schedules import crontab

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("mindping_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = 30  # seconds
celery_app.conf.timezone = settings.DEFAULT_TIMEZONE

celery_app.conf.task_routes = {
    "app.workers.scheduler.dispatch_due": {"queue": "notifications"},
    "app.workers.scheduler.ensure_schedule": {"queue": "notifications"},
}

# Beat schedule: fire due triggers every interval, top up the window in the small hours
celery_app.conf.beat_schedule = {
    "dispatch-due-notifications": {
        "task": "app.workers.scheduler.dispatch_due",
        "schedule": settings.DISPATCH_INTERVAL_SECONDS,
    },
    "daily-ensure-schedule": {
        "task": "app.workers.scheduler.ensure_schedule",
        "schedule": crontab(hour=3, minute=30),
    },
}

# --- Ensure tasks are registered ---
import app.workers.scheduler
