"""Target schemas for API."""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class SnapshotIn(BaseModel):
    """Reference snapshot upload: a data: URL or bare base64 image."""
    label: str = Field(default="", max_length=255)
    data: str = Field(..., min_length=1)


class SnapshotInfo(BaseModel):
    """Reference snapshot metadata (image data is not echoed back)."""
    label: str
    size_bytes: int


class TargetCreate(BaseModel):
    """Schema for creating a new target."""
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)
    check_interval: int = Field(default=60, ge=30, le=86400)
    image_monitoring: bool = False
    reference_snapshots: List[SnapshotIn] = Field(default_factory=list)
    notify_email: Optional[str] = None
    notify_phone: Optional[str] = None


class TargetUpdate(BaseModel):
    """Schema for updating a target. Only configuration fields."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    url: Optional[str] = Field(None, min_length=1)
    check_interval: Optional[int] = Field(None, ge=30, le=86400)
    image_monitoring: Optional[bool] = None
    reference_snapshots: Optional[List[SnapshotIn]] = None
    notify_email: Optional[str] = None
    notify_phone: Optional[str] = None


class TargetResponse(BaseModel):
    """Schema for target in API responses."""
    id: str
    name: str
    url: str
    check_interval: int
    status: str
    uptime: float
    response_time_ms: int
    last_checked: Optional[datetime] = None
    status_detail: Optional[str] = None
    image_monitoring: bool
    reference_snapshots: List[SnapshotInfo] = Field(default_factory=list)
    image_status: Optional[str] = None
    last_image_check: Optional[datetime] = None
    notify_email: Optional[str] = None
    notify_phone: Optional[str] = None
    ssl_expiry_days: Optional[int] = None
    created_at: datetime


class CheckResultResponse(BaseModel):
    """One recorded check."""
    checked_at: datetime
    status: str
    response_time_ms: int
    uptime: float
    status_code: Optional[int] = None
    error_kind: Optional[str] = None
    detail: Optional[str] = None


class ResponseTimeStatsResponse(BaseModel):
    """Response time aggregates over a window."""
    count: int
    avg_ms: Optional[float] = None
    min_ms: Optional[int] = None
    max_ms: Optional[int] = None
    p95_ms: Optional[int] = None
