"""Celery application for background jobs.

Run a worker with beat:
  celery -A raptor.tasks.celery_app worker --beat --loglevel=info
"""
from celery import Celery

from raptor.core.config import settings

celery_app = Celery(
    "raptor",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["raptor.tasks.token_tasks"],
)

celery_app.conf.update(
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    beat_schedule={
        "cleanup-expired-tokens": {
            "task": "raptor.tasks.token_tasks.cleanup_expired_tokens",
            "schedule": settings.TOKEN_CLEANUP_INTERVAL_MINUTES * 60.0,
        },
    },
)
