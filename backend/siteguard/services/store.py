"""Target store - validated management of targets and their alert rules."""
import logging
import uuid
from typing import Any, Dict, List, Optional, Set

from ..config import settings
from ..domain import AlertRule, ReferenceSnapshot, RuleKind, Target, TargetStatus
from ..errors import TargetValidationError
from ..repositories import Repositories
from .ledger import UptimeLedger

logger = logging.getLogger(__name__)

# Fields callers may change; status fields belong to the scheduler
UPDATABLE_TARGET_FIELDS = {
    "name",
    "url",
    "check_interval",
    "image_monitoring",
    "reference_snapshots",
    "notify_email",
    "notify_phone",
}

UPDATABLE_RULE_FIELDS = {
    "name",
    "kind",
    "threshold",
    "enabled",
    "email",
    "sms",
    "push",
    "recipients",
}

NULLABLE_TARGET_FIELDS = {"notify_email", "notify_phone"}

NULLABLE_RULE_FIELDS = {"threshold"}

THRESHOLD_KINDS = {RuleKind.RESPONSE_TIME, RuleKind.SSL_EXPIRY}


def _check_changes(changes: Dict[str, Any], updatable: Set[str], nullable: Set[str]):
    unknown = set(changes) - updatable
    if unknown:
        raise TargetValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    nulls = [name for name, value in changes.items() if value is None and name not in nullable]
    if nulls:
        raise TargetValidationError(f"Fields cannot be null: {', '.join(sorted(nulls))}")


def _threshold_text(value: Any) -> Optional[str]:
    """Store thresholds as text; whole numbers without a trailing .0"""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _snapshots(value: Any) -> List[ReferenceSnapshot]:
    snapshots = []
    for i, item in enumerate(value or []):
        if isinstance(item, ReferenceSnapshot):
            snapshots.append(item)
        elif isinstance(item, dict):
            snapshots.append(ReferenceSnapshot(label=item.get("label") or f"Reference {i + 1}", data=item["data"]))
        else:
            raise TargetValidationError(f"Invalid reference snapshot at position {i}")
    return snapshots


class TargetStore:
    """Adds, updates and removes targets and alert rules."""

    def __init__(
        self,
        repositories: Repositories,
        ledger: UptimeLedger,
        min_check_interval: Optional[int] = None,
    ):
        self.repositories = repositories
        self.ledger = ledger
        self.min_check_interval = min_check_interval or settings.min_check_interval_seconds

    def _validate_target(self, name: str, url: str, check_interval: int):
        if not name or not name.strip():
            raise TargetValidationError("Target name is required")
        if not url or not url.strip():
            raise TargetValidationError("Target URL is required")
        if check_interval < self.min_check_interval:
            raise TargetValidationError(
                f"Check interval must be at least {self.min_check_interval} seconds"
            )

    async def add_target(
        self,
        name: str,
        url: str,
        check_interval: int = 60,
        image_monitoring: bool = False,
        reference_snapshots: Optional[List[Any]] = None,
        notify_email: Optional[str] = None,
        notify_phone: Optional[str] = None,
    ) -> Target:
        """Create a target; it starts as checking with 100% uptime."""
        self._validate_target(name, url, check_interval)
        target = Target(
            id=str(uuid.uuid4()),
            name=name.strip(),
            url=url.strip(),
            check_interval=check_interval,
            status=TargetStatus.CHECKING,
            uptime=100.0,
            response_time_ms=0,
            image_monitoring=image_monitoring,
            reference_snapshots=_snapshots(reference_snapshots),
            notify_email=notify_email or None,
            notify_phone=notify_phone or None,
        )
        target = await self.repositories.targets.add(target)
        logger.info(f"Added target {target.name} ({target.url}) every {target.check_interval}s")
        return target

    async def update_target(self, target_id: str, changes: Dict[str, Any]) -> Optional[Target]:
        """Apply configuration changes. Unknown id returns None."""
        target = await self.repositories.targets.get(target_id)
        if target is None:
            return None

        _check_changes(changes, UPDATABLE_TARGET_FIELDS, NULLABLE_TARGET_FIELDS)

        fields: Dict[str, Any] = {}
        for field_name, value in changes.items():
            if field_name == "reference_snapshots":
                value = _snapshots(value)
            elif field_name in ("name", "url") and isinstance(value, str):
                value = value.strip()
            elif field_name in ("notify_email", "notify_phone"):
                value = value or None
            fields[field_name] = value

        self._validate_target(
            fields.get("name", target.name),
            fields.get("url", target.url),
            fields.get("check_interval", target.check_interval),
        )

        target = await self.repositories.targets.update_config(target_id, **fields)
        if target is None:
            return None
        logger.info(f"Updated target {target.name}: {', '.join(sorted(changes))}")
        return target

    async def remove_target(self, target_id: str) -> bool:
        """Remove a target with its history and rules. Unknown id returns False."""
        removed = await self.repositories.targets.delete(target_id)
        if not removed:
            return False
        await self.ledger.forget(target_id)
        dropped = await self.repositories.rules.delete_for_target(target_id)
        logger.info(f"Removed target {target_id} ({dropped} alert rules)")
        return True

    async def get_target(self, target_id: str) -> Optional[Target]:
        return await self.repositories.targets.get(target_id)

    async def list_targets(self) -> List[Target]:
        targets = await self.repositories.targets.list()
        return sorted(targets, key=lambda t: t.created_at)

    # Alert rules

    @staticmethod
    def _validate_rule(rule: AlertRule):
        if rule.kind in THRESHOLD_KINDS:
            try:
                float(rule.threshold)
            except (TypeError, ValueError):
                raise TargetValidationError(f"{rule.kind.value} rules need a numeric threshold")

    async def add_rule(
        self,
        target_id: str,
        kind: RuleKind,
        name: str = "",
        threshold: Optional[str] = None,
        enabled: bool = True,
        email: bool = True,
        sms: bool = False,
        push: bool = False,
        recipients: Optional[List[str]] = None,
    ) -> AlertRule:
        target = await self.repositories.targets.get(target_id)
        if target is None:
            raise TargetValidationError("Unknown target", target_id=target_id)

        rule = AlertRule(
            id=str(uuid.uuid4()),
            target_id=target_id,
            kind=RuleKind(kind),
            name=name or "",
            threshold=_threshold_text(threshold),
            enabled=enabled,
            email=email,
            sms=sms,
            push=push,
            recipients=list(recipients or []),
        )
        self._validate_rule(rule)
        if not rule.name:
            rule.name = f"{target.name}: {rule.condition}"
        rule = await self.repositories.rules.add(rule)
        logger.info(f"Added {rule.kind.value} alert rule for {target.name}")
        return rule

    async def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> Optional[AlertRule]:
        rule = await self.repositories.rules.get(rule_id)
        if rule is None:
            return None

        _check_changes(changes, UPDATABLE_RULE_FIELDS, NULLABLE_RULE_FIELDS)

        for field_name, value in changes.items():
            if field_name == "kind":
                value = RuleKind(value)
            elif field_name == "threshold":
                value = _threshold_text(value)
            elif field_name == "recipients":
                value = list(value)
            setattr(rule, field_name, value)

        self._validate_rule(rule)
        if not await self.repositories.rules.save(rule):
            return None
        return await self.repositories.rules.get(rule_id)

    async def remove_rule(self, rule_id: str) -> bool:
        """Missing rules return False."""
        return await self.repositories.rules.delete(rule_id)

    async def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        return await self.repositories.rules.get(rule_id)

    async def list_rules(self, target_id: Optional[str] = None) -> List[AlertRule]:
        return await self.repositories.rules.list(target_id=target_id)
