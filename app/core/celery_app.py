from celery import Celery
from celery.schedules import crontab
from app.core.config import get_settings

settings = get_settings()

# Initialize Celery
celery_app = Celery(
    "tasks",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "app.tasks.reconciliation_tasks",
    ]
)

celery_app.conf.update(
    task_track_started=True,
    beat_schedule={
        'reconcile-stale-payments': {
            'task': 'tasks.reconcile_stale_payments',
            'schedule': crontab(minute='*/5'),  # Every 5 minutes
        },
    },
)
