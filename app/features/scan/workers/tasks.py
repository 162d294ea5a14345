"""
Celery tasks driving the scan worker passes.

Each run opens its own sync session, so a pass is exactly one unit of work.
"""
import logging

from celery import shared_task

from app.platform.celery_app import RESULT_TASK, SUBMISSION_TASK
from app.platform.db.session import get_sync_db

logger = logging.getLogger(__name__)


def _run(pass_name: str) -> dict:
    # Import models so SQLAlchemy mappers (users FK) are configured in the worker process
    from app.features.auth.models.user import User  # noqa: F401
    from app.features.scan.workers.scan_worker import ScanWorker

    db = get_sync_db()
    try:
        worker = ScanWorker(db)
        if pass_name == "submission":
            return worker.run_submission_pass()
        return worker.run_result_pass()
    except Exception as e:
        logger.error(f"Scan {pass_name} pass failed: {e}", exc_info=True)
        return {"status": "error", "pass": pass_name, "error": str(e)[:200]}
    finally:
        db.close()


@shared_task(bind=True, name=SUBMISSION_TASK)
def process_submitted_scans(self):
    """Submit SUBMITTED scans to urlscan.io."""
    return _run("submission")


@shared_task(bind=True, name=RESULT_TASK)
def check_processing_scans(self):
    """Poll urlscan.io for PROCESSING scans."""
    return _run("result")
