"""Core data types shared by the monitoring engine."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .errors import ErrorKind


class TargetStatus(str, Enum):
    CHECKING = "checking"
    UP = "up"
    DOWN = "down"


class ImageStatus(str, Enum):
    SAME = "same"
    CHANGED = "changed"
    CHECKING = "checking"


class RuleKind(str, Enum):
    DOWNTIME = "downtime"
    RESPONSE_TIME = "response_time"
    SSL_EXPIRY = "ssl_expiry"
    VISUAL_CHANGE = "visual_change"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class EventStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


@dataclass
class ReferenceSnapshot:
    """A labelled reference image for visual monitoring."""
    label: str
    data: bytes


@dataclass
class Target:
    """A monitored website and its live status."""
    id: str
    name: str
    url: str
    check_interval: int = 60  # seconds
    status: TargetStatus = TargetStatus.CHECKING
    uptime: float = 100.0
    response_time_ms: int = 0
    last_checked: Optional[datetime] = None
    status_detail: Optional[str] = None
    image_monitoring: bool = False
    reference_snapshots: List[ReferenceSnapshot] = field(default_factory=list)
    image_status: Optional[ImageStatus] = None
    last_image_check: Optional[datetime] = None
    notify_email: Optional[str] = None
    notify_phone: Optional[str] = None
    ssl_expiry_days: Optional[int] = None
    ssl_checked_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class CheckResult:
    """One recorded check - immutable ledger entry."""
    target_id: str
    checked_at: datetime
    response_time_ms: int
    status: TargetStatus
    uptime: float
    status_code: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None


@dataclass
class AlertRule:
    """User-defined condition that raises alerts for a target."""
    id: str
    target_id: str
    kind: RuleKind
    name: str = ""
    threshold: Optional[str] = None  # ms, days, or none depending on kind
    enabled: bool = True
    email: bool = True
    sms: bool = False
    push: bool = False
    recipients: List[str] = field(default_factory=list)
    trigger_count: int = 0
    last_triggered: Optional[datetime] = None

    @property
    def channels(self) -> List[Channel]:
        enabled = []
        if self.email:
            enabled.append(Channel.EMAIL)
        if self.sms:
            enabled.append(Channel.SMS)
        if self.push:
            enabled.append(Channel.PUSH)
        return enabled

    @property
    def condition(self) -> str:
        """Human-readable condition text."""
        if self.kind == RuleKind.DOWNTIME:
            return "Website is down"
        if self.kind == RuleKind.RESPONSE_TIME:
            return f"Response time > {self.threshold}ms"
        if self.kind == RuleKind.SSL_EXPIRY:
            return f"SSL expires in {self.threshold} days"
        if self.kind == RuleKind.VISUAL_CHANGE:
            return "Visual changes detected"
        return ""


@dataclass
class AlertEvent:
    """An alert raised by a rule."""
    id: str
    rule_id: str
    target_id: str
    target_name: str
    kind: RuleKind
    message: str
    severity: Severity
    status: EventStatus = EventStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.utcnow)
