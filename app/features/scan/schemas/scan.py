import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from app.features.scan.models.url_scan import ScanStatus
from app.platform.utils.url_validator import validate_url


class CreateScanRequest(BaseModel):
    url: str = Field(..., description="URL to scan, must start with http:// or https://")

    @field_validator("url")
    @classmethod
    def validate_scan_url(cls, v: str) -> str:
        is_valid, error = validate_url(v)
        if not is_valid:
            raise ValueError(error)
        return v


class ScanResponse(BaseModel):
    id: str
    url: str
    user_id: str
    status: ScanStatus
    external_scan_id: Optional[str] = None
    result: Optional[Any] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("result", mode="before")
    @classmethod
    def parse_result(cls, v):
        """Stored as JSON text; hand it back as an object when it parses."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except ValueError:
                return {"raw": v}
        return v

    class Config:
        from_attributes = True


class ScanMetricsResponse(BaseModel):
    counters: dict
    pending: int
