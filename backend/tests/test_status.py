"""Tests for the dashboard queries."""
from datetime import datetime, timedelta

from siteguard.domain import CheckResult, ImageStatus, TargetStatus


def result_at(target_id, checked_at, status):
    return CheckResult(
        target_id=target_id,
        checked_at=checked_at,
        response_time_ms=0 if status == TargetStatus.DOWN else 120,
        status=status,
        uptime=50.0,
    )


async def test_incident_starts_at_first_failure_of_current_outage(engine):
    target = await engine.store.add_target("Shop", "https://shop.example.com")
    now = datetime.utcnow()
    statuses = [TargetStatus.DOWN, TargetStatus.UP, TargetStatus.DOWN, TargetStatus.DOWN]
    for minutes_ago, status in zip((40, 30, 20, 10), statuses):
        await engine.ledger.record(target.id, result_at(target.id, now - timedelta(minutes=minutes_ago), status))
    await engine.repositories.targets.update_status(
        target.id, status=TargetStatus.DOWN, last_checked=now - timedelta(minutes=10),
    )

    [incident] = await engine.status.get_incidents()

    assert incident.target_id == target.id
    assert incident.started_at == now - timedelta(minutes=20)
    assert 1190 <= incident.duration_seconds <= 1260
    assert incident.status == "active"


async def test_incident_without_history_uses_last_check(engine):
    target = await engine.store.add_target("Shop", "https://shop.example.com")
    checked_at = datetime.utcnow() - timedelta(minutes=5)
    await engine.repositories.targets.update_status(target.id, status=TargetStatus.DOWN, last_checked=checked_at)

    [incident] = await engine.status.get_incidents()

    assert incident.started_at == checked_at


async def test_analytics_counts_visual_changes(engine):
    watched = await engine.store.add_target("Watched", "https://a.example.com", image_monitoring=True)
    await engine.store.add_target("Plain", "https://b.example.com")
    await engine.repositories.targets.update_status(
        watched.id, status=TargetStatus.UP, image_status=ImageStatus.CHANGED,
    )

    analytics = await engine.status.get_analytics()

    assert analytics.overview.visual_changes == 1
    assert [row.name for row in analytics.targets] == ["Watched", "Plain"]
    assert analytics.targets[0].visual_change is True
    assert analytics.overview.total_incidents == 0
