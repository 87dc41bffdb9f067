"""Target management API endpoints."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from ..domain import CheckResult, ReferenceSnapshot, Target
from ..engine import MonitoringEngine, get_engine
from ..errors import ComparatorFailure, TargetValidationError
from ..schemas.status import ResponseTimePoint
from ..schemas.target import (
    SnapshotIn,
    SnapshotInfo,
    TargetCreate,
    TargetUpdate,
    TargetResponse,
    CheckResultResponse,
    ResponseTimeStatsResponse,
)
from ..services.comparator import decode_payload

router = APIRouter(prefix="/api/targets", tags=["targets"])


def target_response(target: Target) -> TargetResponse:
    return TargetResponse(
        id=target.id,
        name=target.name,
        url=target.url,
        check_interval=target.check_interval,
        status=target.status.value,
        uptime=round(target.uptime, 2),
        response_time_ms=target.response_time_ms,
        last_checked=target.last_checked,
        status_detail=target.status_detail,
        image_monitoring=target.image_monitoring,
        reference_snapshots=[
            SnapshotInfo(label=s.label, size_bytes=len(s.data)) for s in target.reference_snapshots
        ],
        image_status=target.image_status.value if target.image_status else None,
        last_image_check=target.last_image_check,
        notify_email=target.notify_email,
        notify_phone=target.notify_phone,
        ssl_expiry_days=target.ssl_expiry_days,
        created_at=target.created_at,
    )


def check_result_response(result: CheckResult) -> CheckResultResponse:
    return CheckResultResponse(
        checked_at=result.checked_at,
        status=result.status.value,
        response_time_ms=result.response_time_ms,
        uptime=round(result.uptime, 2),
        status_code=result.status_code,
        error_kind=result.error_kind.value if result.error_kind else None,
        detail=result.detail,
    )


def _decode_snapshots(snapshots: List[SnapshotIn]) -> List[ReferenceSnapshot]:
    decoded = []
    for i, snapshot in enumerate(snapshots):
        try:
            data = decode_payload(snapshot.data)
        except ComparatorFailure as e:
            raise TargetValidationError(f"Reference snapshot {i + 1}: {e.message}")
        decoded.append(ReferenceSnapshot(label=snapshot.label or f"Reference {i + 1}", data=data))
    return decoded


@router.get("", response_model=List[TargetResponse])
async def list_targets(engine: MonitoringEngine = Depends(get_engine)):
    """List all targets with their live status."""
    return [target_response(t) for t in await engine.store.list_targets()]


@router.post("", response_model=TargetResponse, status_code=201)
async def create_target(target: TargetCreate, engine: MonitoringEngine = Depends(get_engine)):
    """Add a target. It is checked on the next scheduler tick."""
    created = await engine.store.add_target(
        name=target.name,
        url=target.url,
        check_interval=target.check_interval,
        image_monitoring=target.image_monitoring,
        reference_snapshots=_decode_snapshots(target.reference_snapshots),
        notify_email=target.notify_email,
        notify_phone=target.notify_phone,
    )
    return target_response(created)


@router.get("/{target_id}", response_model=TargetResponse)
async def get_target(target_id: str, engine: MonitoringEngine = Depends(get_engine)):
    target = await engine.store.get_target(target_id)
    if not target:
        raise HTTPException(status_code=404, detail="Target not found")
    return target_response(target)


@router.put("/{target_id}", response_model=TargetResponse)
async def update_target(
    target_id: str,
    update: TargetUpdate,
    engine: MonitoringEngine = Depends(get_engine),
):
    """Update a target's configuration."""
    changes = update.model_dump(exclude_unset=True)
    if changes.get("reference_snapshots") is not None:
        changes["reference_snapshots"] = _decode_snapshots(update.reference_snapshots)

    target = await engine.store.update_target(target_id, changes)
    if not target:
        raise HTTPException(status_code=404, detail="Target not found")
    return target_response(target)


@router.delete("/{target_id}", status_code=204)
async def delete_target(target_id: str, engine: MonitoringEngine = Depends(get_engine)):
    """Delete a target along with its history and alert rules."""
    if not await engine.store.remove_target(target_id):
        raise HTTPException(status_code=404, detail="Target not found")


@router.get("/{target_id}/history", response_model=List[CheckResultResponse])
async def get_target_history(
    target_id: str,
    hours: int = Query(default=24, ge=1, le=24),
    engine: MonitoringEngine = Depends(get_engine),
):
    """Recorded checks within the trailing window, oldest first."""
    if not await engine.store.get_target(target_id):
        raise HTTPException(status_code=404, detail="Target not found")
    return [check_result_response(r) for r in await engine.ledger.history(target_id, hours)]


@router.get("/{target_id}/response-times", response_model=List[ResponseTimePoint])
async def get_target_response_times(
    target_id: str,
    hours: int = Query(default=24, ge=1, le=168),
    engine: MonitoringEngine = Depends(get_engine),
):
    """Hourly response time series for charts."""
    points = await engine.status.get_response_time_history(target_id, hours)
    return [
        ResponseTimePoint(time=p.time, timestamp=p.timestamp, response_time_ms=p.response_time_ms)
        for p in points
    ]


@router.get("/{target_id}/stats", response_model=ResponseTimeStatsResponse)
async def get_target_stats(
    target_id: str,
    hours: int = Query(default=24, ge=1, le=24),
    engine: MonitoringEngine = Depends(get_engine),
):
    if not await engine.store.get_target(target_id):
        raise HTTPException(status_code=404, detail="Target not found")
    stats = await engine.ledger.response_time_stats(target_id, hours)
    return ResponseTimeStatsResponse(
        count=stats.count,
        avg_ms=stats.avg_ms,
        min_ms=stats.min_ms,
        max_ms=stats.max_ms,
        p95_ms=stats.p95_ms,
    )
