"""Status API for the dashboard, plus the live WebSocket feed."""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from ..engine import MonitoringEngine, get_engine
from ..schemas.status import (
    Analytics,
    AnalyticsOverview,
    Incident,
    MonitoringActive,
    MonitoringHealth,
    RealTimeStats,
    ResponseTimePoint,
    TargetAnalytics,
)
from ..services.websocket_manager import websocket_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/status", tags=["status"])

ws_router = APIRouter(tags=["status"])


@router.get("/stats", response_model=RealTimeStats)
async def get_real_time_stats(engine: MonitoringEngine = Depends(get_engine)):
    """Counters across all targets."""
    stats = await engine.status.get_real_time_stats()
    return RealTimeStats(
        total=stats.total,
        online=stats.online,
        offline=stats.offline,
        checking=stats.checking,
        avg_response_time=stats.avg_response_time,
        avg_uptime=stats.avg_uptime,
    )


@router.get("/response-times/{target_id}", response_model=List[ResponseTimePoint])
async def get_response_time_history(
    target_id: str,
    hours: int = Query(default=24, ge=1, le=168),
    engine: MonitoringEngine = Depends(get_engine),
):
    points = await engine.status.get_response_time_history(target_id, hours)
    return [
        ResponseTimePoint(time=p.time, timestamp=p.timestamp, response_time_ms=p.response_time_ms)
        for p in points
    ]


@router.get("/analytics", response_model=Analytics)
async def get_analytics(engine: MonitoringEngine = Depends(get_engine)):
    analytics = await engine.status.get_analytics()
    overview = analytics.overview
    return Analytics(
        overview=AnalyticsOverview(
            total_uptime=overview.total_uptime,
            avg_response_time=overview.avg_response_time,
            total_incidents=overview.total_incidents,
            total_checks=overview.total_checks,
            visual_changes=overview.visual_changes,
        ),
        targets=[
            TargetAnalytics(
                target_id=row.target_id,
                name=row.name,
                status=row.status.value,
                uptime=row.uptime,
                response_time_ms=row.response_time_ms,
                last_checked=row.last_checked,
                checks=row.checks,
                failed_checks=row.failed_checks,
                visual_change=row.visual_change,
            )
            for row in analytics.targets
        ],
    )


@router.get("/incidents", response_model=List[Incident])
async def get_incidents(engine: MonitoringEngine = Depends(get_engine)):
    """Targets that are down right now."""
    return [
        Incident(
            target_id=i.target_id,
            target_name=i.target_name,
            url=i.url,
            started_at=i.started_at,
            duration_seconds=i.duration_seconds,
            detail=i.detail,
            status=i.status,
        )
        for i in await engine.status.get_incidents()
    ]


@router.get("/active", response_model=MonitoringActive)
async def is_monitoring_active(engine: MonitoringEngine = Depends(get_engine)):
    return MonitoringActive(active=engine.status.is_monitoring_active())


@router.get("/health", response_model=MonitoringHealth)
async def get_monitoring_health(engine: MonitoringEngine = Depends(get_engine)):
    health = await engine.status.get_monitoring_health()
    return MonitoringHealth(
        is_active=health.is_active,
        is_paused=health.is_paused,
        consecutive_errors=health.consecutive_errors,
        max_consecutive_errors=health.max_consecutive_errors,
        total_targets=health.total_targets,
        last_check_time=health.last_check_time,
        needs_recovery=health.needs_recovery,
        recoveries=health.recoveries,
        in_flight=health.in_flight,
    )


@router.post("/reset-errors", response_model=MonitoringHealth)
async def reset_errors(engine: MonitoringEngine = Depends(get_engine)):
    """Clear the scheduler's consecutive error counter."""
    await engine.scheduler.reset_errors()
    return await get_monitoring_health(engine)


@ws_router.websocket("/ws/status")
async def status_feed(websocket: WebSocket):
    """Stream every applied check result to the client."""
    await websocket_manager.connect(websocket)
    try:
        while True:
            # Client messages are ignored; receiving detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await websocket_manager.disconnect(websocket)
