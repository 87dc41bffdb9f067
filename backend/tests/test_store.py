"""Tests for target and alert rule management."""
from datetime import datetime

import pytest

from siteguard.domain import CheckResult, ImageStatus, ReferenceSnapshot, RuleKind, TargetStatus
from siteguard.errors import TargetValidationError
from siteguard.services.ledger import UptimeLedger
from siteguard.services.store import TargetStore


@pytest.fixture
def ledger(repositories):
    return UptimeLedger(repositories.history)


@pytest.fixture
def store(repositories, ledger):
    return TargetStore(repositories, ledger, min_check_interval=30)


class TestTargets:
    """Adding, updating and removing targets."""

    async def test_new_target_defaults(self, store):
        target = await store.add_target("  Example  ", " https://example.com ")

        assert target.name == "Example"
        assert target.url == "https://example.com"
        assert target.status == TargetStatus.CHECKING
        assert target.uptime == 100.0
        assert target.response_time_ms == 0
        assert target.check_interval == 60
        assert target.image_status is None

    @pytest.mark.parametrize("name,url,interval", [
        ("", "https://example.com", 60),
        ("   ", "https://example.com", 60),
        ("Example", "", 60),
        ("Example", "https://example.com", 29),
    ])
    async def test_invalid_targets_rejected(self, store, name, url, interval):
        with pytest.raises(TargetValidationError):
            await store.add_target(name, url, check_interval=interval)
        assert await store.list_targets() == []

    async def test_snapshots_from_dicts(self, store):
        target = await store.add_target(
            "Example",
            "https://example.com",
            image_monitoring=True,
            reference_snapshots=[{"data": b"one"}, {"label": "Checkout", "data": b"two"}],
        )
        assert [s.label for s in target.reference_snapshots] == ["Reference 1", "Checkout"]
        assert isinstance(target.reference_snapshots[0], ReferenceSnapshot)

    async def test_invalid_snapshot_rejected(self, store):
        with pytest.raises(TargetValidationError):
            await store.add_target("Example", "https://example.com", reference_snapshots=["nope"])

    async def test_list_in_creation_order(self, store):
        first = await store.add_target("First", "https://one.example.com")
        second = await store.add_target("Second", "https://two.example.com")
        assert [t.id for t in await store.list_targets()] == [first.id, second.id]

    async def test_update_target(self, store):
        target = await store.add_target("Example", "https://example.com")

        updated = await store.update_target(target.id, {"name": "Renamed", "check_interval": 120})

        assert updated.name == "Renamed"
        assert updated.check_interval == 120
        assert (await store.get_target(target.id)).name == "Renamed"

    async def test_update_unknown_target(self, store):
        assert await store.update_target("missing", {"name": "x"}) is None

    async def test_update_rejects_status_fields(self, store):
        target = await store.add_target("Example", "https://example.com")
        with pytest.raises(TargetValidationError):
            await store.update_target(target.id, {"status": TargetStatus.UP})

    async def test_update_validates(self, store):
        target = await store.add_target("Example", "https://example.com")
        with pytest.raises(TargetValidationError):
            await store.update_target(target.id, {"check_interval": 5})

    async def test_disabling_image_monitoring_clears_visual_status(self, store, repositories):
        target = await store.add_target("Example", "https://example.com", image_monitoring=True)
        await repositories.targets.update_status(target.id, image_status=ImageStatus.CHANGED)

        updated = await store.update_target(target.id, {"image_monitoring": False})

        assert updated.image_status is None

    async def test_update_leaves_check_results_alone(self, store, repositories):
        target = await store.add_target("Example", "https://example.com")
        checked_at = datetime.utcnow()
        await repositories.targets.update_status(
            target.id, status=TargetStatus.UP, uptime=97.5, last_checked=checked_at,
        )

        updated = await store.update_target(target.id, {"name": "Renamed"})

        assert updated.status == TargetStatus.UP
        assert updated.uptime == 97.5
        assert updated.last_checked == checked_at

    @pytest.mark.parametrize("field_name", [
        "name", "url", "check_interval", "image_monitoring", "reference_snapshots",
    ])
    async def test_update_rejects_null_for_required_fields(self, store, field_name):
        target = await store.add_target("Example", "https://example.com")

        with pytest.raises(TargetValidationError, match=field_name):
            await store.update_target(target.id, {field_name: None})

        stored = await store.get_target(target.id)
        assert stored.name == "Example"
        assert stored.check_interval == 60

    async def test_contact_fields_can_be_cleared(self, store):
        target = await store.add_target("Example", "https://example.com", notify_email="ops@example.com")

        updated = await store.update_target(target.id, {"notify_email": None})

        assert updated.notify_email is None

    async def test_remove_target_drops_history_and_rules(self, store, ledger):
        target = await store.add_target("Example", "https://example.com")
        await store.add_rule(target.id, RuleKind.DOWNTIME)
        await ledger.record(target.id, CheckResult(
            target_id=target.id,
            checked_at=target.created_at,
            response_time_ms=120,
            status=TargetStatus.UP,
            uptime=100.0,
        ))

        assert await store.remove_target(target.id) is True

        assert await store.get_target(target.id) is None
        assert await ledger.history(target.id) == []
        assert await store.list_rules(target.id) == []

    async def test_remove_unknown_target(self, store):
        assert await store.remove_target("missing") is False


class TestRules:
    """Alert rule management."""

    @pytest.fixture
    async def target(self, store):
        return await store.add_target("Example", "https://example.com")

    async def test_default_rule_name(self, store, target):
        rule = await store.add_rule(target.id, RuleKind.RESPONSE_TIME, threshold=2000.0)
        assert rule.threshold == "2000"
        assert rule.name.startswith("Example: ")
        assert rule.enabled is True
        assert rule.email is True

    async def test_rule_kind_from_string(self, store, target):
        rule = await store.add_rule(target.id, "ssl_expiry", threshold="14")
        assert rule.kind == RuleKind.SSL_EXPIRY

    @pytest.mark.parametrize("kind,threshold", [
        (RuleKind.RESPONSE_TIME, None),
        (RuleKind.RESPONSE_TIME, "fast"),
        (RuleKind.SSL_EXPIRY, ""),
    ])
    async def test_threshold_kinds_need_numbers(self, store, target, kind, threshold):
        with pytest.raises(TargetValidationError):
            await store.add_rule(target.id, kind, threshold=threshold)

    async def test_rule_for_unknown_target(self, store):
        with pytest.raises(TargetValidationError):
            await store.add_rule("missing", RuleKind.DOWNTIME)

    async def test_update_rule(self, store, target):
        rule = await store.add_rule(target.id, RuleKind.RESPONSE_TIME, threshold="2000")

        updated = await store.update_rule(rule.id, {"threshold": 500, "enabled": False, "recipients": ["ops@example.com"]})

        assert updated.threshold == "500"
        assert updated.enabled is False
        assert (await store.get_rule(rule.id)).recipients == ["ops@example.com"]

    async def test_update_rule_rejects_bad_threshold(self, store, target):
        rule = await store.add_rule(target.id, RuleKind.RESPONSE_TIME, threshold="2000")
        with pytest.raises(TargetValidationError):
            await store.update_rule(rule.id, {"threshold": "soon"})

    @pytest.mark.parametrize("field_name", [
        "name", "kind", "enabled", "email", "sms", "push", "recipients",
    ])
    async def test_update_rule_rejects_null_for_required_fields(self, store, target, field_name):
        rule = await store.add_rule(target.id, RuleKind.DOWNTIME)

        with pytest.raises(TargetValidationError, match=field_name):
            await store.update_rule(rule.id, {field_name: None})

        assert (await store.get_rule(rule.id)).enabled is True

    async def test_update_rule_clears_threshold(self, store, target):
        rule = await store.add_rule(target.id, RuleKind.DOWNTIME, threshold="5")

        updated = await store.update_rule(rule.id, {"threshold": None})

        assert updated.threshold is None

    async def test_update_rule_keeps_trigger_bookkeeping(self, store, target, repositories):
        rule = await store.add_rule(target.id, RuleKind.DOWNTIME)
        triggered_at = datetime.utcnow()
        await repositories.rules.record_trigger(rule.id, triggered_at)

        updated = await store.update_rule(rule.id, {"name": "Renamed"})

        assert updated.name == "Renamed"
        assert updated.trigger_count == 1
        assert updated.last_triggered == triggered_at

    async def test_update_unknown_rule(self, store):
        assert await store.update_rule("missing", {"enabled": False}) is None

    async def test_remove_rule(self, store, target):
        rule = await store.add_rule(target.id, RuleKind.DOWNTIME)
        assert await store.remove_rule(rule.id) is True
        assert await store.remove_rule(rule.id) is False
        assert await store.list_rules() == []


class TestScopedWrites:
    """Status and configuration are written through separate repository calls."""

    async def test_status_write_rejects_config_fields(self, store, repositories):
        target = await store.add_target("Example", "https://example.com")
        with pytest.raises(ValueError):
            await repositories.targets.update_status(target.id, name="Renamed")

    async def test_config_write_rejects_status_fields(self, store, repositories):
        target = await store.add_target("Example", "https://example.com")
        with pytest.raises(ValueError):
            await repositories.targets.update_config(target.id, status=TargetStatus.UP)

    async def test_visual_status_ignored_while_image_monitoring_off(self, store, repositories):
        target = await store.add_target("Example", "https://example.com")

        updated = await repositories.targets.update_status(
            target.id, status=TargetStatus.UP, image_status=ImageStatus.CHANGED,
        )

        assert updated.status == TargetStatus.UP
        assert updated.image_status is None

    async def test_writes_to_removed_target_return_none(self, repositories):
        assert await repositories.targets.update_status("missing", status=TargetStatus.UP) is None
        assert await repositories.targets.update_config("missing", name="x") is None
        assert await repositories.rules.record_trigger("missing", datetime.utcnow()) is None
