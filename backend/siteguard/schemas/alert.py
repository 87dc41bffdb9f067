"""Alert rule and event schemas for API."""
from datetime import datetime
from typing import Optional, List, Union
from pydantic import BaseModel, Field

RULE_KIND_PATTERN = "^(downtime|response_time|ssl_expiry|visual_change)$"


class AlertRuleCreate(BaseModel):
    """Schema for creating an alert rule."""
    target_id: str
    kind: str = Field(..., pattern=RULE_KIND_PATTERN)
    name: str = Field(default="", max_length=255)
    threshold: Optional[Union[int, float, str]] = None  # ms or days depending on kind
    enabled: bool = True
    email: bool = True
    sms: bool = False
    push: bool = False
    recipients: List[str] = Field(default_factory=list)


class AlertRuleUpdate(BaseModel):
    """Schema for updating an alert rule."""
    kind: Optional[str] = Field(None, pattern=RULE_KIND_PATTERN)
    name: Optional[str] = Field(None, max_length=255)
    threshold: Optional[Union[int, float, str]] = None
    enabled: Optional[bool] = None
    email: Optional[bool] = None
    sms: Optional[bool] = None
    push: Optional[bool] = None
    recipients: Optional[List[str]] = None


class AlertRuleResponse(BaseModel):
    """Schema for alert rule in API responses."""
    id: str
    target_id: str
    kind: str
    name: str
    condition: str
    threshold: Optional[str] = None
    enabled: bool
    channels: List[str]
    recipients: List[str]
    trigger_count: int
    last_triggered: Optional[datetime] = None


class AlertEventResponse(BaseModel):
    """Schema for alert event in API responses."""
    id: str
    rule_id: str
    target_id: str
    target_name: str
    kind: str
    message: str
    severity: str
    status: str
    created_at: datetime


class NotificationTestRequest(BaseModel):
    """Recipient for a test notification; message falls back to a stock text."""
    recipient: str = Field(..., min_length=1)
    message: Optional[str] = Field(None, max_length=1000)


class NotificationTestResponse(BaseModel):
    success: bool
    channel: str
    message: str
