"""
Celery tasks for background processing.

Tasks are defined here and imported by both the API (to enqueue) and
the worker (to execute).
"""
from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from core.config import settings
from core.logging import setup_logging
from celerybeat_schedule import beat_schedule

# Create Celery app instance
celery_app = Celery(
    "coach_engine",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes max per task
    task_soft_time_limit=8 * 60,  # 8 minutes soft limit
    beat_schedule=beat_schedule,
)


# Workers log through the same formatters as the API instead of Celery's defaults
@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    setup_logging()


# Import tasks to register them
from . import snapshot_tasks  # noqa: E402
from . import memory_tasks  # noqa: E402

__all__ = ["celery_app"]
