"""Celery application configuration."""

from celery import Celery

from codegate.config import get_settings

settings = get_settings()

celery_app = Celery(
    "codegate",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["codegate.tasks.run_analysis"],
)

# Configuration
celery_app.conf.update(
    # Task execution
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task behavior
    task_track_started=True,
    task_default_queue=settings.worker_queue,

    # Retry behavior
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Worker pool: one analysis per worker process at a time
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.worker_concurrency,
)
