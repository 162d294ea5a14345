import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, String, Text

from app.platform.db.base import BaseModel


class ScanStatus(enum.Enum):
    """Scan status state machine: submitted -> processing -> done | failed"""
    submitted = "SUBMITTED"
    processing = "PROCESSING"
    done = "DONE"
    failed = "FAILED"


class UrlScan(BaseModel):
    """
    One row per scan request.

    Created by the submission flow (fresh SUBMITTED row or a DONE copy of a
    cached result); afterwards only the background worker changes it.
    """
    __tablename__ = "url_scans"

    url = Column(String(2048), nullable=False)

    # Owner never changes after creation
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(Enum(ScanStatus), default=ScanStatus.submitted, nullable=False, index=True)

    # Set when the provider accepts the submission; required for result polling
    external_scan_id = Column(String(128), nullable=True, index=True)

    # Raw provider payload (JSON text), set on DONE
    result = Column(Text, nullable=True)

    # Diagnostic, set on FAILED
    failure_reason = Column(Text, nullable=True)

    # Lease columns, used only when the database can't SKIP LOCKED
    claim_token = Column(String(36), nullable=True, index=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_url_scans_status_user", "status", "user_id"),
        Index("idx_url_scans_user_url_created", "user_id", "url", "created_at"),
        Index("idx_url_scans_url_status_created", "url", "status", "created_at"),
    )

    def __repr__(self):
        return f"<UrlScan(id={self.id}, user_id={self.user_id}, status={self.status}, url={self.url})>"
