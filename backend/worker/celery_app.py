"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Serialization and timezone settings
- Beat schedule for the schedule and delay sweeps
"""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from app.config import get_settings
from core.logging_config import setup_logging

settings = get_settings()

celery_app = Celery(
    "workflow_engine",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.scheduled.*": {"queue": "triggers"},
    },
    task_default_queue="default",

    # Result expiration (24 hours)
    result_expires=86400,

    # Task execution limits
    task_soft_time_limit=300,
    task_time_limit=600,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,

    # Resume overlap is safe through the row claim. The schedule sweep is not
    # idempotent: its window is wider than the beat, so a run may start twice.
    beat_schedule={
        "process-scheduled-workflows": {
            "task": "worker.tasks.scheduled.process_scheduled_workflows",
            "schedule": float(settings.SCHEDULE_SWEEP_INTERVAL_SECONDS),
            "options": {"queue": "triggers"},
        },
        "resume-delayed-workflows": {
            "task": "worker.tasks.scheduled.resume_delayed_workflows",
            "schedule": float(settings.SCHEDULE_SWEEP_INTERVAL_SECONDS),
            "options": {"queue": "triggers"},
        },
    },

    include=[
        "worker.tasks.scheduled",
    ],
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    # Connected receiver stops Celery from installing its own handlers
    setup_logging()
