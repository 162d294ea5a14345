"""
Fairness batch worker.

Two passes, each run on its own Celery beat timer:
- submission pass: SUBMITTED -> PROCESSING (or FAILED)
- result pass:     PROCESSING -> DONE (or FAILED, or untouched while not ready)

Both assemble their batch the same way. First a fairness phase walks the
owners that have work in the target status and claims a small slice per
owner, so one heavy user can't starve everyone else. Whatever budget is left
then goes to an efficiency phase that claims any remaining rows.

Claims are held until the end of the pass: row locks until the final commit,
leases until release_claims(). Every record is handled on its own so one
failure never aborts the batch.
"""
from typing import Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from app.features.scan.exceptions import ClaimLost
from app.features.scan.models.url_scan import ScanStatus, UrlScan
from app.features.scan.services.state.transitions import mark_done, mark_failed, mark_processing
from app.features.scan.services.store.scan_store import ScanStore
from app.features.scan.services.urlscan.urlscan_client import UrlScanClient
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.metrics import ScanMetrics, get_metrics

logger = get_logger("scan_worker")

# failure reason codes (also the `reason` tag on scans.failed)
SUBMISSION_ERROR = "submission_error"
RESULT_ERROR = "result_error"
INVALID_STATE = "invalid_state"


class ScanWorker:
    def __init__(
        self,
        db: Session,
        client: Optional[UrlScanClient] = None,
        metrics: Optional[ScanMetrics] = None,
        store: Optional[ScanStore] = None,
        submission_batch_size: Optional[int] = None,
        result_batch_size: Optional[int] = None,
        per_user_batch_size: Optional[int] = None,
    ):
        self.db = db
        self.client = client if client is not None else UrlScanClient()
        self.metrics = metrics if metrics is not None else get_metrics()
        self.store = store if store is not None else ScanStore(
            db,
            claim_strategy=settings.WORKER_CLAIM_STRATEGY,
            lease_seconds=settings.WORKER_CLAIM_LEASE_SECONDS,
        )
        self.submission_batch_size = (
            submission_batch_size if submission_batch_size is not None else settings.WORKER_SUBMISSION_BATCH_SIZE
        )
        self.result_batch_size = (
            result_batch_size if result_batch_size is not None else settings.WORKER_RESULT_BATCH_SIZE
        )
        self.per_user_batch_size = (
            per_user_batch_size if per_user_batch_size is not None else settings.WORKER_PER_USER_BATCH_SIZE
        )

    # ─────────────────────────────────────────────
    # Passes
    # ─────────────────────────────────────────────

    def run_submission_pass(self) -> Dict:
        return self._run_pass(ScanStatus.submitted, self.submission_batch_size, self.process_scan)

    def run_result_pass(self) -> Dict:
        return self._run_pass(ScanStatus.processing, self.result_batch_size, self.check_scan_result)

    def _run_pass(self, status: ScanStatus, max_batch_size: int, processor: Callable[[UrlScan], None]) -> Dict:
        logger.info(f"Running fairness worker for status: {status.value}")
        try:
            summary = self._run_fairness_worker(status, max_batch_size, processor)
            self.store.release_claims()
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Worker pass for status {status.value} aborted")
            raise

        logger.info(
            f"Finished worker run for status: {status.value} "
            f"(fairness={summary['fairness']}, efficiency={summary['efficiency']})"
        )
        return {"status": status.value, **summary}

    def _run_fairness_worker(
        self,
        status: ScanStatus,
        max_batch_size: int,
        processor: Callable[[UrlScan], None],
    ) -> Dict:
        claimed_ids: Set[str] = set()
        fairness_count = 0

        # --- Phase 1: fairness, round-robin over owners ---
        user_ids = self.store.distinct_owners_with_status(status)
        if user_ids:
            logger.info(f"Fairness pass: Found {len(user_ids)} users with pending scans.")

        for user_id in user_ids:
            remaining = max_batch_size - fairness_count
            if remaining <= 0:
                logger.info("Batch limit reached during fairness pass. Deferring remaining users.")
                break

            scans = self.store.claim_batch_by_owner_and_status(
                user_id,
                status,
                min(self.per_user_batch_size, remaining),
                exclude_ids=claimed_ids,
            )
            fairness_count += self._process_batch(scans, processor, claimed_ids)

        # --- Phase 2: efficiency, bulk claim with the leftover budget ---
        efficiency_count = 0
        remaining = max_batch_size - fairness_count
        if remaining > 0:
            logger.info(f"Efficiency pass: Fetching up to {remaining} more scans.")
            scans = self.store.claim_batch_by_status(status, remaining, exclude_ids=claimed_ids)
            if scans:
                logger.info(f"Found and locked {len(scans)} additional scans in efficiency pass.")
            efficiency_count = self._process_batch(scans, processor, claimed_ids)

        return {
            "processed": fairness_count + efficiency_count,
            "fairness": fairness_count,
            "efficiency": efficiency_count,
        }

    def _process_batch(
        self,
        scans: List[UrlScan],
        processor: Callable[[UrlScan], None],
        claimed_ids: Set[str],
    ) -> int:
        for scan in scans:
            claimed_ids.add(scan.id)
            processor(scan)
        return len(scans)

    # ─────────────────────────────────────────────
    # Per-record processors
    # ─────────────────────────────────────────────

    def process_scan(self, scan: UrlScan) -> None:
        """SUBMITTED -> PROCESSING, or FAILED when the provider won't take it."""
        try:
            external_scan_id = self.client.submit_scan(scan.url)
            if external_scan_id:
                mark_processing(scan, external_scan_id)
                self.store.save(scan)
                logger.info(f"Scan ID: {scan.id} successfully submitted. External ID: {external_scan_id}")
            else:
                self._handle_failure(scan, SUBMISSION_ERROR, "Failed to submit scan to urlscan.io")
        except ClaimLost as e:
            logger.warning(f"Skipping scan {e.scan_id}: another worker owns it now")
        except Exception as e:
            self._handle_failure(
                scan,
                SUBMISSION_ERROR,
                f"An unexpected error occurred while submitting scan: {e}",
                exc=e,
            )

    def check_scan_result(self, scan: UrlScan) -> None:
        """PROCESSING -> DONE once the provider has a result; untouched while it doesn't."""
        if not scan.external_scan_id:
            logger.error(f"Internal state error: scan {scan.id} is PROCESSING without an external scan ID")
            self._handle_failure(
                scan, INVALID_STATE, "Scan is in PROCESSING state but has no external scan ID"
            )
            return

        try:
            result = self.client.get_scan_result(scan.external_scan_id)
            if result:
                mark_done(scan, result)
                self.store.save(scan)
                self.metrics.increment("scans.completed")
                logger.info(f"Successfully fetched result for scan ID: {scan.id}. Status set to DONE.")
            else:
                logger.info(f"Result for scan ID: {scan.id} not yet available.")
        except ClaimLost as e:
            logger.warning(f"Skipping scan {e.scan_id}: another worker owns it now")
        except Exception as e:
            self._handle_failure(
                scan,
                RESULT_ERROR,
                f"An unexpected error occurred while checking result: {e}",
                exc=e,
            )

    def _handle_failure(
        self,
        scan: UrlScan,
        reason_code: str,
        message: str,
        exc: Optional[Exception] = None,
    ) -> None:
        try:
            mark_failed(scan, message)
            self.store.save(scan)
        except ClaimLost as e:
            logger.warning(f"Scan {e.scan_id} was reclaimed by another worker; not marking it FAILED")
            return
        except Exception as e:
            # Don't let one bad row take the rest of the batch down
            logger.error(f"Could not mark scan {scan.id} as FAILED: {e}", exc_info=True)
            return

        self.metrics.increment("scans.failed", reason=reason_code)
        if exc is not None:
            logger.error(f"Scan ID: {scan.id} failed. Reason: {message}. Details: {exc}", exc_info=exc)
        else:
            logger.error(f"Scan ID: {scan.id} failed. Reason: {message}.")
