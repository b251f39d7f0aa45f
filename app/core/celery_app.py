"""Celery application for the payment status sync schedule."""

from celery import Celery

from app.core.config import get_settings


settings = get_settings()
broker_url = settings.redis_url or "memory://"

celery_app = Celery(
    "migs_payments",
    broker=broker_url,
    backend=settings.redis_url or "cache+memory://",
    include=["app.tasks.payment_sync"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=900,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    "payment-sync-schedule": {
        "task": "payment_sync.schedule",
        "schedule": settings.sync_interval_minutes * 60.0,
    },
    "payment-sync-fallback": {
        "task": "payment_sync.fallback",
        "schedule": settings.sync_fallback_interval_minutes * 60.0,
    },
}
