"""In-memory repositories for tests and ephemeral runs."""
import copy
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from ..domain import AlertEvent, AlertRule, CheckResult, Target
from .base import (
    CONFIG_FIELDS,
    STATUS_FIELDS,
    VISUAL_FIELDS,
    AlertEventRepository,
    AlertRuleRepository,
    HistoryRepository,
    TargetRepository,
    check_fields,
)


class MemoryTargetRepository(TargetRepository):
    """Targets kept in a dict; callers always get copies."""

    def __init__(self):
        self._targets: Dict[str, Target] = {}

    async def add(self, target: Target) -> Target:
        self._targets[target.id] = copy.deepcopy(target)
        return copy.deepcopy(target)

    async def get(self, target_id: str) -> Optional[Target]:
        target = self._targets.get(target_id)
        return copy.deepcopy(target) if target else None

    async def list(self) -> List[Target]:
        return [copy.deepcopy(t) for t in self._targets.values()]

    async def update_status(self, target_id: str, **fields) -> Optional[Target]:
        check_fields(fields, STATUS_FIELDS)
        target = self._targets.get(target_id)
        if target is None:
            return None
        for name, value in fields.items():
            if name in VISUAL_FIELDS and not target.image_monitoring:
                continue
            setattr(target, name, value)
        return copy.deepcopy(target)

    async def update_config(self, target_id: str, **fields) -> Optional[Target]:
        check_fields(fields, CONFIG_FIELDS)
        target = self._targets.get(target_id)
        if target is None:
            return None
        for name, value in fields.items():
            setattr(target, name, copy.deepcopy(value))
        if not target.image_monitoring:
            target.image_status = None
        return copy.deepcopy(target)

    async def delete(self, target_id: str) -> bool:
        return self._targets.pop(target_id, None) is not None


class MemoryHistoryRepository(HistoryRepository):
    """Per-target lists of immutable check results."""

    def __init__(self):
        self._entries: Dict[str, List[CheckResult]] = defaultdict(list)

    async def append(self, result: CheckResult) -> None:
        self._entries[result.target_id].append(result)

    async def list_for(
        self,
        target_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[CheckResult]:
        entries = sorted(self._entries.get(target_id, []), key=lambda r: r.checked_at)
        if since is not None:
            entries = [r for r in entries if r.checked_at >= since]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    async def evict(self, target_id: str, older_than: datetime, keep_last: int) -> int:
        entries = self._entries.get(target_id)
        if not entries:
            return 0
        kept = [r for r in entries if r.checked_at >= older_than]
        if len(kept) > keep_last:
            kept = kept[-keep_last:]
        dropped = len(entries) - len(kept)
        self._entries[target_id] = kept
        return dropped

    async def delete_for(self, target_id: str) -> None:
        self._entries.pop(target_id, None)


class MemoryAlertRuleRepository(AlertRuleRepository):

    def __init__(self):
        self._rules: Dict[str, AlertRule] = {}

    async def add(self, rule: AlertRule) -> AlertRule:
        self._rules[rule.id] = copy.deepcopy(rule)
        return copy.deepcopy(rule)

    async def get(self, rule_id: str) -> Optional[AlertRule]:
        rule = self._rules.get(rule_id)
        return copy.deepcopy(rule) if rule else None

    async def list(self, target_id: Optional[str] = None) -> List[AlertRule]:
        return [
            copy.deepcopy(r)
            for r in self._rules.values()
            if target_id is None or r.target_id == target_id
        ]

    async def save(self, rule: AlertRule) -> bool:
        current = self._rules.get(rule.id)
        if current is None:
            return False
        stored = copy.deepcopy(rule)
        stored.trigger_count = current.trigger_count
        stored.last_triggered = current.last_triggered
        self._rules[rule.id] = stored
        return True

    async def record_trigger(self, rule_id: str, triggered_at: datetime) -> Optional[AlertRule]:
        rule = self._rules.get(rule_id)
        if rule is None:
            return None
        rule.trigger_count += 1
        rule.last_triggered = triggered_at
        return copy.deepcopy(rule)

    async def delete(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    async def delete_for_target(self, target_id: str) -> int:
        doomed = [rid for rid, r in self._rules.items() if r.target_id == target_id]
        for rid in doomed:
            del self._rules[rid]
        return len(doomed)


class MemoryAlertEventRepository(AlertEventRepository):

    def __init__(self):
        self._events: Dict[str, AlertEvent] = {}

    async def add(self, event: AlertEvent) -> AlertEvent:
        self._events[event.id] = copy.deepcopy(event)
        return copy.deepcopy(event)

    async def get(self, event_id: str) -> Optional[AlertEvent]:
        event = self._events.get(event_id)
        return copy.deepcopy(event) if event else None

    async def list(self, limit: int = 50, target_id: Optional[str] = None) -> List[AlertEvent]:
        events = [
            e for e in self._events.values()
            if target_id is None or e.target_id == target_id
        ]
        events.sort(key=lambda e: e.created_at, reverse=True)
        return [copy.deepcopy(e) for e in events[:limit]]

    async def save(self, event: AlertEvent) -> bool:
        if event.id not in self._events:
            return False
        self._events[event.id] = copy.deepcopy(event)
        return True

    async def trim(self, keep: int) -> int:
        ordered = sorted(self._events.values(), key=lambda e: e.created_at, reverse=True)
        doomed = ordered[keep:]
        for event in doomed:
            del self._events[event.id]
        return len(doomed)
