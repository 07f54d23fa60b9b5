"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend, plus the
beat schedule for the periodic POS jobs.
"""

from celery import Celery
from celery.schedules import crontab

from app.core.config import get_settings

settings = get_settings()

# Redis connection URL
REDIS_URL = settings.redis_url

# Create Celery app
celery_app = Celery(
    'pos_worker',
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=['app.tasks']  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='Asia/Kathmandu',
    enable_utc=True,

    # Inline execution for tests and local development
    task_always_eager=settings.celery_task_always_eager,
    task_eager_propagates=True,

    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=4,  # Number of worker processes

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    # Fix for Celery 6.0 warning
    broker_connection_retry_on_startup=True,
)

# Periodic jobs
celery_app.conf.beat_schedule = {
    'scan-session-alerts': {
        'task': 'app.tasks.scan_session_alerts',
        'schedule': 60.0,
    },
    'retry-cbms-syncs': {
        'task': 'app.tasks.retry_cbms_syncs',
        'schedule': 15 * 60.0,
    },
    'expire-loyalty-points': {
        'task': 'app.tasks.expire_loyalty_points',
        'schedule': crontab(hour=1, minute=0),
    },
    'export-daily-sales-register': {
        'task': 'app.tasks.export_sales_register',
        'schedule': crontab(hour=23, minute=50),
    },
}


if __name__ == '__main__':
    celery_app.start()
