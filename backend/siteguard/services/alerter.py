"""Alert evaluator - turns rules into alert events and dispatches notifications."""
import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from ..domain import (
    AlertEvent,
    AlertRule,
    Channel,
    CheckResult,
    EventStatus,
    ImageStatus,
    RuleKind,
    Severity,
    Target,
    TargetStatus,
)
from ..errors import ErrorKind, NotifierFailure, TargetValidationError
from ..repositories import AlertEventRepository, AlertRuleRepository
from .notifier import LoggingNotifier, Notifier, NotifyResult, recipient_channel, recipients_for

logger = logging.getLogger(__name__)

# Event log retention
MAX_EVENTS = 500

# Checks listed in alert emails
EMAIL_HISTORY_LINES = 10

TEST_SUBJECT = "SiteGuard - Test Notification"
TEST_BODY = "This is a test notification from SiteGuard. If you received it, alerts on this channel are working."


def _numeric_threshold(rule: AlertRule) -> Optional[float]:
    try:
        return float(rule.threshold)
    except (TypeError, ValueError):
        return None


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


class AlertEvaluator:
    """Evaluates alert rules for a target and records what fired."""

    def __init__(
        self,
        rules: AlertRuleRepository,
        events: AlertEventRepository,
        notifier: Optional[Notifier] = None,
        max_events: int = MAX_EVENTS,
    ):
        self.rules = rules
        self.events = events
        self.notifier = notifier or LoggingNotifier()
        self.max_events = max_events

    def evaluate(
        self,
        target: Target,
        history: Sequence[CheckResult],
        rules: Iterable[AlertRule],
        ssl_days_remaining: Optional[int] = None,
    ) -> List[AlertEvent]:
        """Build an event for every rule whose condition holds.

        Pure: no rule bookkeeping, persistence or delivery. Each rule yields
        at most one event per call.
        """
        fired: List[AlertEvent] = []
        seen = set()
        for rule in rules:
            if rule.id in seen or not rule.enabled or rule.target_id != target.id:
                continue
            seen.add(rule.id)

            triggered = self._check_rule(target, rule, ssl_days_remaining)
            if triggered is None:
                continue
            message, severity = triggered
            fired.append(AlertEvent(
                id=str(uuid.uuid4()),
                rule_id=rule.id,
                target_id=target.id,
                target_name=target.name,
                kind=rule.kind,
                message=message,
                severity=severity,
            ))
        return fired

    def _check_rule(self, target: Target, rule: AlertRule, ssl_days_remaining: Optional[int]):
        """Returns (message, severity) when the rule fires, else None."""
        if rule.kind == RuleKind.DOWNTIME:
            if target.status != TargetStatus.DOWN:
                return None
            message = f"{target.name} is currently down"
            if target.status_detail:
                message = f"{message}: {target.status_detail}"
            return message, Severity.CRITICAL

        if rule.kind == RuleKind.RESPONSE_TIME:
            threshold = _numeric_threshold(rule)
            if threshold is None or target.response_time_ms <= threshold:
                return None
            return (
                f"{target.name} response time ({target.response_time_ms}ms) "
                f"exceeds threshold ({_format_number(threshold)}ms)",
                Severity.WARNING,
            )

        if rule.kind == RuleKind.VISUAL_CHANGE:
            if target.image_status != ImageStatus.CHANGED:
                return None
            return f"Visual changes detected on {target.name}", Severity.WARNING

        if rule.kind == RuleKind.SSL_EXPIRY:
            threshold = _numeric_threshold(rule)
            if threshold is None or ssl_days_remaining is None or ssl_days_remaining > threshold:
                return None
            return (
                f"{target.name} SSL certificate expires in {ssl_days_remaining} days",
                Severity.WARNING,
            )

        return None

    async def process(
        self,
        target: Target,
        history: Sequence[CheckResult],
        ssl_days: Optional[int] = None,
        kinds: Optional[Iterable[RuleKind]] = None,
    ) -> List[AlertEvent]:
        """Evaluate the target's rules, persist fired events and notify.

        Delivery failures are logged and never interrupt bookkeeping.
        """
        rules = await self.rules.list(target_id=target.id)
        if kinds is not None:
            wanted = set(kinds)
            rules = [r for r in rules if r.kind in wanted]
        if not rules:
            return []

        events = self.evaluate(target, history, rules, ssl_days_remaining=ssl_days)
        if not events:
            return []

        rules_by_id = {r.id: r for r in rules}
        now = datetime.utcnow()
        for event in events:
            rule = await self.rules.record_trigger(event.rule_id, now)
            if rule is None:
                logger.debug(f"Rule {event.rule_id} removed while evaluating {target.name}")
                rule = rules_by_id[event.rule_id]

            event.created_at = now
            await self.events.add(event)
            logger.info(f"Alert [{event.severity.value}] {event.message}")

            await self._dispatch(target, rule, event, history)

        dropped = await self.events.trim(self.max_events)
        if dropped:
            logger.debug(f"Trimmed {dropped} old alert events")
        return events

    async def _dispatch(self, target: Target, rule: AlertRule, event: AlertEvent, history: Sequence[CheckResult]):
        subject = self._build_subject(target, event)
        body = self._build_body(target, rule, event, history)

        for channel in rule.channels:
            recipients = self._recipients(channel, rule, target)
            if not recipients:
                logger.debug(f"No {channel.value} recipients for rule {rule.id}, skipping")
                continue
            try:
                result = await self.notifier.notify(channel, recipients, subject, body)
            except Exception as e:
                logger.warning(
                    f"{ErrorKind.NOTIFIER_FAILURE.value} on {channel.value} for {target.name}: "
                    f"{type(e).__name__}: {e}"
                )
                continue
            if not result.success:
                logger.warning(
                    f"{ErrorKind.NOTIFIER_FAILURE.value} on {channel.value} for {target.name}: {result.error}"
                )

    @staticmethod
    def _recipients(channel: Channel, rule: AlertRule, target: Target) -> List[str]:
        recipients = recipients_for(channel, rule.recipients)
        if channel == Channel.EMAIL and target.notify_email:
            recipients.append(target.notify_email.strip())
        elif channel == Channel.SMS and target.notify_phone:
            recipients.append(target.notify_phone.strip())
        # Drop duplicates, keep order
        return list(dict.fromkeys(r for r in recipients if r))

    @staticmethod
    def _build_subject(target: Target, event: AlertEvent) -> str:
        return f"{event.severity.value.upper()} - {target.name} - {event.kind.value}"

    @staticmethod
    def _build_body(target: Target, rule: AlertRule, event: AlertEvent, history: Sequence[CheckResult]) -> str:
        lines = [
            "SiteGuard Alert Report",
            "=" * 40,
            "",
            f"Target: {target.name}",
            f"URL: {target.url}",
            f"Rule: {rule.name or rule.condition}",
            f"Severity: {event.severity.value.upper()}",
            f"Message: {event.message}",
            f"Time: {event.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        ]

        recent = list(history)[-EMAIL_HISTORY_LINES:]
        if recent:
            lines.append("")
            lines.append("--- Recent Checks ---")
            for result in reversed(recent):
                timestamp = result.checked_at.strftime("%Y-%m-%d %H:%M:%S UTC")
                detail = f" - {result.detail}" if result.detail else ""
                response = f" ({result.response_time_ms}ms)" if result.response_time_ms else ""
                lines.append(f"{timestamp}: {result.status.value.upper()}{response}{detail}")

        lines.append("")
        lines.append("--")
        lines.append("SiteGuard Monitoring")
        return "\n".join(lines)

    async def send_test(self, channel: Channel, recipient: str, message: Optional[str] = None) -> NotifyResult:
        """Send a test notification to a single recipient.

        Raises TargetValidationError when the recipient does not belong to the
        channel, and NotifierFailure when delivery fails.
        """
        recipient = (recipient or "").strip()
        if not recipient:
            raise TargetValidationError(f"A {channel.value} recipient is required")
        if recipient_channel(recipient) != channel:
            raise TargetValidationError(f"'{recipient}' is not a valid {channel.value} recipient")

        try:
            result = await self.notifier.notify(channel, [recipient], TEST_SUBJECT, message or TEST_BODY)
        except Exception as e:
            raise NotifierFailure(f"{channel.value} test notification failed: {type(e).__name__}: {e}") from e
        if not result.success:
            raise NotifierFailure(result.error or f"{channel.value} test notification failed")

        logger.info(f"Test {channel.value} notification sent to {recipient}")
        return result

    async def list_events(self, limit: int = 50, target_id: Optional[str] = None) -> List[AlertEvent]:
        return await self.events.list(limit=limit, target_id=target_id)

    async def acknowledge(self, event_id: str) -> Optional[AlertEvent]:
        return await self._set_status(event_id, EventStatus.ACKNOWLEDGED)

    async def resolve(self, event_id: str) -> Optional[AlertEvent]:
        return await self._set_status(event_id, EventStatus.RESOLVED)

    async def _set_status(self, event_id: str, status: EventStatus) -> Optional[AlertEvent]:
        event = await self.events.get(event_id)
        if event is None:
            return None
        event.status = status
        if not await self.events.save(event):
            return None
        logger.info(f"Alert event {event_id} marked {status.value}")
        return event
