class InvalidScanTransition(ValueError):
    """Raised when a status change would move a scan backwards or out of a terminal state."""

    def __init__(self, scan_id, current, target):
        self.scan_id = scan_id
        self.current = current
        self.target = target
        super().__init__(f"Scan {scan_id}: cannot move from {current} to {target}")


class ScanNotFound(Exception):
    """Scan does not exist or is not owned by the caller."""

    def __init__(self, scan_id: str):
        self.scan_id = scan_id
        super().__init__(f"Scan {scan_id} not found")


class ClaimLost(Exception):
    """Another worker holds the claim on this scan now; our write was not applied."""

    def __init__(self, scan_id: str):
        self.scan_id = scan_id
        super().__init__(f"Claim on scan {scan_id} is no longer held")
