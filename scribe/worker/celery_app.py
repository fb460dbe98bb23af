"""
Celery application for scheduled publication.

Run a worker and the beat scheduler with:

    celery -A scribe.worker.celery_app worker --loglevel=info
    celery -A scribe.worker.celery_app beat --loglevel=info
"""
from datetime import timedelta

from celery import Celery

from ..config import get_settings
from ..services.scheduler import JobName

settings = get_settings()

celery_app = Celery(
    "scribe",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["scribe.worker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Acknowledge after the handler returns: a crashed worker means redelivery.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
)

celery_app.conf.beat_schedule = {
    JobName.CHECK_SCHEDULED.value: {
        "task": JobName.CHECK_SCHEDULED.value,
        "schedule": timedelta(seconds=settings.scheduled_sweep_interval),
    },
}
