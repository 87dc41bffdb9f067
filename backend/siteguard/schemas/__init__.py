"""Pydantic schemas for API request/response models."""
from .target import (
    SnapshotIn,
    SnapshotInfo,
    TargetCreate,
    TargetUpdate,
    TargetResponse,
    CheckResultResponse,
    ResponseTimeStatsResponse,
)
from .alert import (
    AlertRuleCreate,
    AlertRuleUpdate,
    AlertRuleResponse,
    AlertEventResponse,
    NotificationTestRequest,
    NotificationTestResponse,
)
from .status import (
    RealTimeStats,
    ResponseTimePoint,
    MonitoringActive,
    MonitoringHealth,
    Analytics,
    AnalyticsOverview,
    TargetAnalytics,
    Incident,
)

__all__ = [
    "SnapshotIn",
    "SnapshotInfo",
    "TargetCreate",
    "TargetUpdate",
    "TargetResponse",
    "CheckResultResponse",
    "ResponseTimeStatsResponse",
    "AlertRuleCreate",
    "AlertRuleUpdate",
    "AlertRuleResponse",
    "AlertEventResponse",
    "NotificationTestRequest",
    "NotificationTestResponse",
    "RealTimeStats",
    "ResponseTimePoint",
    "MonitoringActive",
    "MonitoringHealth",
    "Analytics",
    "AnalyticsOverview",
    "TargetAnalytics",
    "Incident",
]
