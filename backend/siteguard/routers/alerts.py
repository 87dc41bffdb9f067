"""Alert rule and event API endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..domain import AlertEvent, AlertRule, Channel
from ..engine import MonitoringEngine, get_engine
from ..errors import NotifierFailure
from ..schemas.alert import (
    AlertRuleCreate,
    AlertRuleUpdate,
    AlertRuleResponse,
    AlertEventResponse,
    NotificationTestRequest,
    NotificationTestResponse,
)

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


def rule_response(rule: AlertRule) -> AlertRuleResponse:
    return AlertRuleResponse(
        id=rule.id,
        target_id=rule.target_id,
        kind=rule.kind.value,
        name=rule.name,
        condition=rule.condition,
        threshold=rule.threshold,
        enabled=rule.enabled,
        channels=[c.value for c in rule.channels],
        recipients=rule.recipients,
        trigger_count=rule.trigger_count,
        last_triggered=rule.last_triggered,
    )


def event_response(event: AlertEvent) -> AlertEventResponse:
    return AlertEventResponse(
        id=event.id,
        rule_id=event.rule_id,
        target_id=event.target_id,
        target_name=event.target_name,
        kind=event.kind.value,
        message=event.message,
        severity=event.severity.value,
        status=event.status.value,
        created_at=event.created_at,
    )


@router.get("/rules", response_model=List[AlertRuleResponse])
async def list_rules(
    target_id: Optional[str] = None,
    engine: MonitoringEngine = Depends(get_engine),
):
    return [rule_response(r) for r in await engine.store.list_rules(target_id)]


@router.post("/rules", response_model=AlertRuleResponse, status_code=201)
async def create_rule(rule: AlertRuleCreate, engine: MonitoringEngine = Depends(get_engine)):
    if not await engine.store.get_target(rule.target_id):
        raise HTTPException(status_code=404, detail="Target not found")
    created = await engine.store.add_rule(**rule.model_dump())
    return rule_response(created)


@router.put("/rules/{rule_id}", response_model=AlertRuleResponse)
async def update_rule(
    rule_id: str,
    update: AlertRuleUpdate,
    engine: MonitoringEngine = Depends(get_engine),
):
    rule = await engine.store.update_rule(rule_id, update.model_dump(exclude_unset=True))
    if not rule:
        raise HTTPException(status_code=404, detail="Alert rule not found")
    return rule_response(rule)


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(rule_id: str, engine: MonitoringEngine = Depends(get_engine)):
    if not await engine.store.remove_rule(rule_id):
        raise HTTPException(status_code=404, detail="Alert rule not found")


@router.get("/events", response_model=List[AlertEventResponse])
async def list_events(
    limit: int = Query(default=50, ge=1, le=500),
    target_id: Optional[str] = None,
    engine: MonitoringEngine = Depends(get_engine),
):
    """Most recent alert events first."""
    return [event_response(e) for e in await engine.alerts.list_events(limit, target_id)]


@router.post("/events/{event_id}/acknowledge", response_model=AlertEventResponse)
async def acknowledge_event(event_id: str, engine: MonitoringEngine = Depends(get_engine)):
    event = await engine.alerts.acknowledge(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Alert event not found")
    return event_response(event)


@router.post("/events/{event_id}/resolve", response_model=AlertEventResponse)
async def resolve_event(event_id: str, engine: MonitoringEngine = Depends(get_engine)):
    event = await engine.alerts.resolve(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Alert event not found")
    return event_response(event)


@router.post("/test/{channel}", response_model=NotificationTestResponse)
async def send_test_notification(
    channel: Channel,
    request: NotificationTestRequest,
    engine: MonitoringEngine = Depends(get_engine),
):
    """Send a test message over one channel to check its configuration."""
    try:
        await engine.alerts.send_test(channel, request.recipient, request.message)
    except NotifierFailure as e:
        raise HTTPException(status_code=502, detail=e.message)
    return NotificationTestResponse(
        success=True,
        channel=channel.value,
        message=f"Test {channel.value} notification sent to {request.recipient.strip()}",
    )
