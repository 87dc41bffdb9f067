"""Tests for alert rule evaluation and dispatch."""
import pytest

from siteguard.domain import (
    AlertRule,
    Channel,
    EventStatus,
    ImageStatus,
    RuleKind,
    Severity,
    Target,
    TargetStatus,
)
from siteguard.errors import ErrorKind, NotifierFailure, TargetValidationError
from siteguard.repositories.memory import MemoryAlertEventRepository, MemoryAlertRuleRepository
from siteguard.services.alerter import AlertEvaluator

from conftest import RecordingNotifier


def make_target(**overrides) -> Target:
    values = dict(id="t1", name="Shop", url="https://shop.example.com", status=TargetStatus.UP, response_time_ms=100)
    values.update(overrides)
    return Target(**values)


def make_rule(kind: RuleKind, threshold=None, **overrides) -> AlertRule:
    values = dict(id=f"r-{kind.value}", target_id="t1", kind=kind, threshold=threshold)
    values.update(overrides)
    return AlertRule(**values)


@pytest.fixture
def rules():
    return MemoryAlertRuleRepository()


@pytest.fixture
def events():
    return MemoryAlertEventRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def evaluator(rules, events, notifier):
    return AlertEvaluator(rules, events, notifier)


class TestEvaluate:
    """Pure rule evaluation."""

    def test_downtime_fires_critical_with_reason(self, evaluator):
        target = make_target(status=TargetStatus.DOWN, response_time_ms=0, status_detail="HTTP 500")
        fired = evaluator.evaluate(target, [], [make_rule(RuleKind.DOWNTIME)])
        assert len(fired) == 1
        assert fired[0].severity == Severity.CRITICAL
        assert fired[0].message.startswith("Shop is currently down")
        assert "HTTP 500" in fired[0].message
        assert fired[0].status == EventStatus.ACTIVE

    def test_downtime_silent_when_up(self, evaluator):
        assert evaluator.evaluate(make_target(), [], [make_rule(RuleKind.DOWNTIME)]) == []

    def test_response_time_over_threshold(self, evaluator):
        target = make_target(response_time_ms=2500)
        fired = evaluator.evaluate(target, [], [make_rule(RuleKind.RESPONSE_TIME, "2000")])
        assert fired[0].message == "Shop response time (2500ms) exceeds threshold (2000ms)"
        assert fired[0].severity == Severity.WARNING

    def test_fast_response_does_not_fire(self, evaluator):
        target = make_target(response_time_ms=100)
        assert evaluator.evaluate(target, [], [make_rule(RuleKind.RESPONSE_TIME, "2000")]) == []

    def test_visual_change(self, evaluator):
        target = make_target(image_status=ImageStatus.CHANGED)
        fired = evaluator.evaluate(target, [], [make_rule(RuleKind.VISUAL_CHANGE)])
        assert fired[0].message == "Visual changes detected on Shop"

    def test_ssl_expiry_within_threshold(self, evaluator):
        rule = make_rule(RuleKind.SSL_EXPIRY, "14")
        fired = evaluator.evaluate(make_target(), [], [rule], ssl_days_remaining=7)
        assert fired[0].message == "Shop SSL certificate expires in 7 days"
        assert evaluator.evaluate(make_target(), [], [rule], ssl_days_remaining=30) == []

    def test_ssl_expiry_unknown_days_does_not_fire(self, evaluator):
        assert evaluator.evaluate(make_target(), [], [make_rule(RuleKind.SSL_EXPIRY, "14")]) == []

    @pytest.mark.parametrize("rule", [
        make_rule(RuleKind.DOWNTIME, enabled=False),
        make_rule(RuleKind.DOWNTIME, target_id="other"),
        make_rule(RuleKind.RESPONSE_TIME, None),
        make_rule(RuleKind.RESPONSE_TIME, "fast"),
    ])
    def test_inert_rules(self, evaluator, rule):
        target = make_target(status=TargetStatus.DOWN, response_time_ms=0)
        assert evaluator.evaluate(target, [], [rule]) == []

    def test_rule_fires_once_per_evaluation(self, evaluator):
        rule = make_rule(RuleKind.DOWNTIME)
        target = make_target(status=TargetStatus.DOWN)
        assert len(evaluator.evaluate(target, [], [rule, rule])) == 1


class TestProcess:
    """Bookkeeping, persistence and dispatch."""

    async def test_fired_rule_updates_bookkeeping_and_logs_event(self, evaluator, rules, events):
        await rules.add(make_rule(RuleKind.DOWNTIME))
        target = make_target(status=TargetStatus.DOWN)

        fired = await evaluator.process(target, [])
        assert len(fired) == 1

        rule = await rules.get("r-downtime")
        assert rule.trigger_count == 1
        assert rule.last_triggered is not None
        stored = await events.list()
        assert [e.id for e in stored] == [fired[0].id]

    async def test_kinds_filter(self, evaluator, rules):
        await rules.add(make_rule(RuleKind.DOWNTIME))
        target = make_target(status=TargetStatus.DOWN)
        assert await evaluator.process(target, [], kinds=[RuleKind.VISUAL_CHANGE]) == []

    async def test_recipients_filtered_per_channel(self, evaluator, rules, notifier):
        await rules.add(make_rule(
            RuleKind.DOWNTIME,
            email=True,
            sms=True,
            push=True,
            recipients=["ops@example.com", "+1 555 123 4567", "a1b2c3devicetoken"],
        ))
        target = make_target(status=TargetStatus.DOWN, notify_email="owner@example.com", notify_phone="+15550001111")

        await evaluator.process(target, [])

        sent = {channel: recipients for channel, recipients, _, _ in notifier.sent}
        assert sent[Channel.EMAIL] == ["ops@example.com", "owner@example.com"]
        assert sent[Channel.SMS] == ["+1 555 123 4567", "+15550001111"]
        assert sent[Channel.PUSH] == ["a1b2c3devicetoken"]

    async def test_channel_without_recipients_is_skipped(self, evaluator, rules, notifier):
        await rules.add(make_rule(RuleKind.DOWNTIME, email=True, sms=True, recipients=["ops@example.com"]))
        await evaluator.process(make_target(status=TargetStatus.DOWN), [])
        assert [channel for channel, _, _, _ in notifier.sent] == [Channel.EMAIL]

    @pytest.mark.parametrize("notifier", [RecordingNotifier(fail=True), RecordingNotifier(raise_error=True)])
    async def test_notifier_failure_does_not_stop_bookkeeping(self, rules, events, notifier):
        evaluator = AlertEvaluator(rules, events, notifier)
        await rules.add(make_rule(RuleKind.DOWNTIME, recipients=["ops@example.com"]))

        fired = await evaluator.process(make_target(status=TargetStatus.DOWN), [])

        assert len(fired) == 1
        assert (await rules.get("r-downtime")).trigger_count == 1
        assert len(await events.list()) == 1

    async def test_event_log_is_trimmed(self, rules, events, notifier):
        evaluator = AlertEvaluator(rules, events, notifier, max_events=3)
        await rules.add(make_rule(RuleKind.DOWNTIME))
        target = make_target(status=TargetStatus.DOWN)
        for _ in range(5):
            await evaluator.process(target, [])
        assert len(await events.list(limit=100)) == 3
        assert (await rules.get("r-downtime")).trigger_count == 5


class TestEventLifecycle:

    async def test_acknowledge_and_resolve(self, evaluator, rules):
        await rules.add(make_rule(RuleKind.DOWNTIME))
        fired = await evaluator.process(make_target(status=TargetStatus.DOWN), [])
        event_id = fired[0].id

        acked = await evaluator.acknowledge(event_id)
        assert acked.status == EventStatus.ACKNOWLEDGED
        resolved = await evaluator.resolve(event_id)
        assert resolved.status == EventStatus.RESOLVED
        assert (await evaluator.list_events())[0].status == EventStatus.RESOLVED

    async def test_unknown_event_is_noop(self, evaluator):
        assert await evaluator.acknowledge("missing") is None
        assert await evaluator.resolve("missing") is None


class TestSendTest:
    """Test notifications sent on demand."""

    async def test_sends_stock_message(self, evaluator, notifier):
        result = await evaluator.send_test(Channel.EMAIL, " ops@example.com ")

        assert result.success is True
        [(channel, recipients, subject, body)] = notifier.sent
        assert channel == Channel.EMAIL
        assert recipients == ["ops@example.com"]
        assert subject == "SiteGuard - Test Notification"
        assert body.startswith("This is a test notification from SiteGuard")

    async def test_custom_message(self, evaluator, notifier):
        await evaluator.send_test(Channel.SMS, "+15550001111", "Pager check")
        assert notifier.sent[0][3] == "Pager check"

    @pytest.mark.parametrize("channel,recipient", [
        (Channel.SMS, "ops@example.com"),
        (Channel.EMAIL, "+15550001111"),
        (Channel.EMAIL, "   "),
    ])
    async def test_recipient_must_match_channel(self, evaluator, notifier, channel, recipient):
        with pytest.raises(TargetValidationError):
            await evaluator.send_test(channel, recipient)
        assert notifier.sent == []

    @pytest.mark.parametrize("notifier_options", [{"fail": True}, {"raise_error": True}])
    async def test_delivery_failure_raises(self, rules, events, notifier_options):
        evaluator = AlertEvaluator(rules, events, RecordingNotifier(**notifier_options))

        with pytest.raises(NotifierFailure) as excinfo:
            await evaluator.send_test(Channel.EMAIL, "ops@example.com")

        assert excinfo.value.kind == ErrorKind.NOTIFIER_FAILURE
