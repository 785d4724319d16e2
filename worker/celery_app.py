"""
Celery worker configuration for background tasks.
"""
from celery import Celery
from celery.schedules import crontab
from gym_retention.config import settings

# Create Celery app
celery_app = Celery(
    "gym_retention_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "worker.tasks.retention_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Task routes
    task_routes={
        "worker.tasks.retention_tasks.*": {"queue": "retention"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "nightly-retention-recomputation": {
            "task": "worker.tasks.retention_tasks.recalculate_retention_risk",
            "schedule": crontab(
                hour=settings.RETENTION_SWEEP_HOUR,
                minute=settings.RETENTION_SWEEP_MINUTE
            ),
        },
    }
)

if __name__ == "__main__":
    celery_app.start()
