"""
Forward-only transitions for UrlScan.status.

Every status write goes through one of these functions so the invariants hold:
PROCESSING and later carry an external_scan_id, DONE carries a result, and
DONE/FAILED are terminal.
"""
from app.features.scan.exceptions import InvalidScanTransition
from app.features.scan.models.url_scan import ScanStatus, UrlScan

ALLOWED_TRANSITIONS = {
    None: {ScanStatus.submitted, ScanStatus.done},
    ScanStatus.submitted: {ScanStatus.processing, ScanStatus.failed},
    ScanStatus.processing: {ScanStatus.done, ScanStatus.failed},
    ScanStatus.done: set(),
    ScanStatus.failed: set(),
}

TERMINAL_STATUSES = {ScanStatus.done, ScanStatus.failed}


def can_transition(current, target: ScanStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _check(scan: UrlScan, target: ScanStatus) -> None:
    if not can_transition(scan.status, target):
        raise InvalidScanTransition(scan.id, scan.status, target)


def mark_processing(scan: UrlScan, external_scan_id: str) -> UrlScan:
    if not external_scan_id:
        raise ValueError("external_scan_id is required to enter PROCESSING")
    _check(scan, ScanStatus.processing)
    scan.external_scan_id = external_scan_id
    scan.status = ScanStatus.processing
    return scan


def mark_done(scan: UrlScan, result: str) -> UrlScan:
    if not result:
        raise ValueError("result is required to enter DONE")
    if not scan.external_scan_id:
        raise ValueError("external_scan_id is required to enter DONE")
    _check(scan, ScanStatus.done)
    scan.result = result
    scan.status = ScanStatus.done
    return scan


def mark_failed(scan: UrlScan, reason: str) -> UrlScan:
    _check(scan, ScanStatus.failed)
    scan.failure_reason = reason
    scan.status = ScanStatus.failed
    return scan


def new_submitted_scan(url: str, user_id: str) -> UrlScan:
    return UrlScan(url=url, user_id=user_id, status=ScanStatus.submitted)


def new_cached_scan(url: str, user_id: str, source: UrlScan) -> UrlScan:
    """A DONE scan for `user_id` that reuses another scan's provider result."""
    if source.status != ScanStatus.done or not source.result:
        raise ValueError(f"Scan {source.id} is not a completed scan and can't seed the cache")
    return UrlScan(
        url=url,
        user_id=user_id,
        status=ScanStatus.done,
        result=source.result,
        external_scan_id=source.external_scan_id,
    )
