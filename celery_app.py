"""Celery configuration for background title summarization."""
from celery import Celery
import os

from config import TITLE_SWEEP_INTERVAL

# Create Celery instance
celery = Celery(
    'persona_chat',
    broker=os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0'),
    backend=os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0'),
    include=['services.titles']  # Include task modules
)

# Configure Celery
celery.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    result_expires=3600,  # Results expire after 1 hour
    task_time_limit=5 * 60,  # 5 minutes hard limit
    task_soft_time_limit=4 * 60,  # 4 minutes soft limit
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Periodic sweep for threads whose first summarization failed
celery.conf.beat_schedule = {
    'sweep-untitled-threads': {
        'task': 'sweep_untitled_threads',
        'schedule': TITLE_SWEEP_INTERVAL,
        'options': {'expires': TITLE_SWEEP_INTERVAL},  # Drop sweeps that queued behind a slow one
    },
}

if __name__ == '__main__':
    celery.start()
