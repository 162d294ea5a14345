"""
Scan models package.
"""
from app.features.scan.models.url_scan import ScanStatus, UrlScan

__all__ = ["ScanStatus", "UrlScan"]
