"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Serialization and timezone settings
- Beat schedule that runs the scheduler pass every minute
"""

from celery import Celery
from celery.schedules import crontab

from app.config import SCHEDULER_HARD_LIMIT_SECONDS, get_settings

settings = get_settings()

celery_app = Celery(
    "automail",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
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
        "worker.tasks.automation_cron.*": {"queue": "scheduler"},
    },
    task_default_queue="default",

    result_expires=3600,

    # The scheduler stops itself at SCHEDULER_TIME_BUDGET_SECONDS; these
    # limits only catch a pass that hangs on I/O.
    task_soft_time_limit=SCHEDULER_HARD_LIMIT_SECONDS,
    task_time_limit=SCHEDULER_HARD_LIMIT_SECONDS + 30,
    worker_prefetch_multiplier=1,

    beat_schedule={
        "process-automation-queue": {
            "task": "worker.tasks.automation_cron.process_automation_queue",
            "schedule": crontab(minute="*/1"),
            # Drop a run that could not start within its own minute
            "options": {"queue": "scheduler", "expires": settings.SCHEDULER_INTERVAL_SECONDS - 5},
        },
    },

    include=[
        "worker.tasks.automation_cron",
    ],
)
