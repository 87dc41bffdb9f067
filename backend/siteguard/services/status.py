"""Status service - dashboard statistics and monitoring state queries."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from ..domain import CheckResult, ImageStatus, TargetStatus
from ..repositories import TargetRepository
from .ledger import ResponseTimePoint, UptimeLedger
from .scheduler import MonitoringScheduler, SchedulerHealth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealTimeStats:
    """Aggregate status across all targets."""
    total: int
    online: int
    offline: int
    checking: int
    avg_response_time: int
    avg_uptime: float


@dataclass(frozen=True)
class TargetAnalytics:
    """Per-target figures for the analytics view."""
    target_id: str
    name: str
    status: TargetStatus
    uptime: float
    response_time_ms: int
    last_checked: Optional[datetime]
    checks: int
    failed_checks: int
    visual_change: bool


@dataclass(frozen=True)
class AnalyticsOverview:
    total_uptime: float
    avg_response_time: int
    total_incidents: int
    total_checks: int
    visual_changes: int


@dataclass(frozen=True)
class Analytics:
    overview: AnalyticsOverview
    targets: List[TargetAnalytics]


@dataclass(frozen=True)
class Incident:
    """A target that is down right now."""
    target_id: str
    target_name: str
    url: str
    started_at: Optional[datetime]
    duration_seconds: int
    detail: Optional[str]
    status: str = "active"


def _down_since(history: Sequence[CheckResult]) -> Optional[datetime]:
    """Start of the trailing run of down results."""
    started_at = None
    for result in reversed(history):
        if result.status != TargetStatus.DOWN:
            break
        started_at = result.checked_at
    return started_at


class StatusService:
    """Read-only queries over targets, history and the scheduler."""

    def __init__(self, targets: TargetRepository, ledger: UptimeLedger, scheduler: MonitoringScheduler):
        self.targets = targets
        self.ledger = ledger
        self.scheduler = scheduler

    async def get_real_time_stats(self) -> RealTimeStats:
        targets = await self.targets.list()
        total = len(targets)
        online = sum(1 for t in targets if t.status == TargetStatus.UP)
        offline = sum(1 for t in targets if t.status == TargetStatus.DOWN)
        checking = sum(1 for t in targets if t.status == TargetStatus.CHECKING)

        avg_response_time = round(sum(t.response_time_ms for t in targets) / total) if total else 0
        avg_uptime = round(sum(t.uptime for t in targets) / total, 2) if total else 100.0

        return RealTimeStats(
            total=total,
            online=online,
            offline=offline,
            checking=checking,
            avg_response_time=int(avg_response_time),
            avg_uptime=avg_uptime,
        )

    async def get_response_time_history(self, target_id: str, hours: int = 24) -> List[ResponseTimePoint]:
        target = await self.targets.get(target_id)
        return await self.ledger.response_time_history(target, target_id, hours=hours)

    async def get_analytics(self) -> Analytics:
        """Overview figures plus one row per target, from the retained history."""
        targets = await self.targets.list()
        rows = []
        for target in sorted(targets, key=lambda t: t.created_at):
            history = await self.ledger.history(target.id)
            rows.append(TargetAnalytics(
                target_id=target.id,
                name=target.name,
                status=target.status,
                uptime=target.uptime,
                response_time_ms=target.response_time_ms,
                last_checked=target.last_checked,
                checks=len(history),
                failed_checks=sum(1 for r in history if r.status == TargetStatus.DOWN),
                visual_change=target.image_status == ImageStatus.CHANGED,
            ))

        total = len(rows)
        overview = AnalyticsOverview(
            total_uptime=round(sum(r.uptime for r in rows) / total, 2) if total else 100.0,
            avg_response_time=round(sum(r.response_time_ms for r in rows) / total) if total else 0,
            total_incidents=sum(1 for r in rows if r.status == TargetStatus.DOWN),
            total_checks=sum(r.checks for r in rows),
            visual_changes=sum(1 for r in rows if r.visual_change),
        )
        return Analytics(overview=overview, targets=rows)

    async def get_incidents(self) -> List[Incident]:
        """Targets currently down, longest outage first."""
        now = datetime.utcnow()
        incidents = []
        for target in await self.targets.list():
            if target.status != TargetStatus.DOWN:
                continue
            history = await self.ledger.history(target.id)
            started_at = _down_since(history) or target.last_checked
            incidents.append(Incident(
                target_id=target.id,
                target_name=target.name,
                url=target.url,
                started_at=started_at,
                duration_seconds=max(0, int((now - started_at).total_seconds())) if started_at else 0,
                detail=target.status_detail,
            ))
        incidents.sort(key=lambda i: i.duration_seconds, reverse=True)
        return incidents

    def is_monitoring_active(self) -> bool:
        return self.scheduler.is_active()

    async def get_monitoring_health(self) -> SchedulerHealth:
        return await self.scheduler.health()
