from celery import Celery
from kombu import Queue

from app.platform.config import settings

SUBMISSION_TASK = "app.features.scan.workers.tasks.process_submitted_scans"
RESULT_TASK = "app.features.scan.workers.tasks.check_processing_scans"


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - scan.submission: SUBMITTED -> PROCESSING pass
    - scan.result: PROCESSING -> DONE pass

    Beat fires each pass on its own fixed interval. Running several workers
    (or overlapping runs) is safe: every pass only touches the rows it claimed.
    """
    celery_app = Celery(
        "url_scanner",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        result_expires=3600,

        task_routes={
            SUBMISSION_TASK: {"queue": "scan.submission"},
            RESULT_TASK: {"queue": "scan.result"},
        },

        task_queues=(
            Queue("default"),
            Queue("scan.submission"),
            Queue("scan.result"),
        ),

        task_default_queue="default",

        worker_prefetch_multiplier=1,  # Fair distribution

        # A pass that dies mid-way must not be replayed blindly; the next tick picks up
        task_acks_late=False,

        beat_schedule={
            "process-submitted-scans": {
                "task": SUBMISSION_TASK,
                "schedule": settings.WORKER_SUBMISSION_DELAY_MS / 1000.0,
            },
            "check-processing-scans": {
                "task": RESULT_TASK,
                "schedule": settings.WORKER_RESULT_DELAY_MS / 1000.0,
            },
        },
    )

    celery_app.autodiscover_tasks(["app.features.scan.workers"])

    return celery_app


# Global Celery app instance
celery_app = create_celery_app()
