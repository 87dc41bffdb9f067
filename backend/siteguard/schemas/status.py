"""Status schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class RealTimeStats(BaseModel):
    """Dashboard counters across all targets."""
    total: int
    online: int
    offline: int
    checking: int
    avg_response_time: int
    avg_uptime: float


class ResponseTimePoint(BaseModel):
    """Hourly response time bucket for charts."""
    time: str
    timestamp: datetime
    response_time_ms: int


class MonitoringActive(BaseModel):
    active: bool


class MonitoringHealth(BaseModel):
    """Scheduler health."""
    is_active: bool
    is_paused: bool
    consecutive_errors: int
    max_consecutive_errors: int
    total_targets: int
    last_check_time: Optional[datetime] = None
    needs_recovery: bool
    recoveries: int
    in_flight: int


class AnalyticsOverview(BaseModel):
    total_uptime: float
    avg_response_time: int
    total_incidents: int
    total_checks: int
    visual_changes: int


class TargetAnalytics(BaseModel):
    target_id: str
    name: str
    status: str
    uptime: float
    response_time_ms: int
    last_checked: Optional[datetime] = None
    checks: int
    failed_checks: int
    visual_change: bool


class Analytics(BaseModel):
    """Overview plus one row per target."""
    overview: AnalyticsOverview
    targets: List[TargetAnalytics]


class Incident(BaseModel):
    """An ongoing outage."""
    target_id: str
    target_name: str
    url: str
    started_at: Optional[datetime] = None
    duration_seconds: int
    detail: Optional[str] = None
    status: str
