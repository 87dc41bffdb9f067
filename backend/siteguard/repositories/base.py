"""Repository interfaces injected into the monitoring engine."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..domain import AlertEvent, AlertRule, CheckResult, Target

# Written by the scheduler only
STATUS_FIELDS = frozenset({
    "status",
    "response_time_ms",
    "uptime",
    "last_checked",
    "status_detail",
    "image_status",
    "last_image_check",
    "ssl_expiry_days",
    "ssl_checked_at",
})

# Written by target management only
CONFIG_FIELDS = frozenset({
    "name",
    "url",
    "check_interval",
    "image_monitoring",
    "reference_snapshots",
    "notify_email",
    "notify_phone",
})

VISUAL_FIELDS = frozenset({"image_status", "last_image_check"})


def check_fields(fields: Dict[str, Any], allowed: Iterable[str]):
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Fields not writable here: {', '.join(sorted(unknown))}")


class TargetRepository(ABC):
    """Storage for monitored targets.

    Status and configuration are written separately so a check finishing
    while a target is being edited never overwrites the other side's fields.
    """

    @abstractmethod
    async def add(self, target: Target) -> Target:
        ...

    @abstractmethod
    async def get(self, target_id: str) -> Optional[Target]:
        ...

    @abstractmethod
    async def list(self) -> List[Target]:
        ...

    @abstractmethod
    async def update_status(self, target_id: str, **fields) -> Optional[Target]:
        """Write STATUS_FIELDS. Visual fields are ignored while image monitoring is off.

        Returns the updated target, or None if it no longer exists.
        """

    @abstractmethod
    async def update_config(self, target_id: str, **fields) -> Optional[Target]:
        """Write CONFIG_FIELDS. Turning image monitoring off clears the visual status.

        Returns the updated target, or None if it no longer exists.
        """

    @abstractmethod
    async def delete(self, target_id: str) -> bool:
        ...


class HistoryRepository(ABC):
    """Append-only storage for check results."""

    @abstractmethod
    async def append(self, result: CheckResult) -> None:
        ...

    @abstractmethod
    async def list_for(
        self,
        target_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[CheckResult]:
        """Chronological results for a target; with limit, the most recent `limit` entries."""

    @abstractmethod
    async def evict(self, target_id: str, older_than: datetime, keep_last: int) -> int:
        """Drop entries older than `older_than` and beyond the newest `keep_last`. Returns count dropped."""

    @abstractmethod
    async def delete_for(self, target_id: str) -> None:
        ...


class AlertRuleRepository(ABC):
    """Storage for alert rules."""

    @abstractmethod
    async def add(self, rule: AlertRule) -> AlertRule:
        ...

    @abstractmethod
    async def get(self, rule_id: str) -> Optional[AlertRule]:
        ...

    @abstractmethod
    async def list(self, target_id: Optional[str] = None) -> List[AlertRule]:
        ...

    @abstractmethod
    async def save(self, rule: AlertRule) -> bool:
        """Persist a rule's configuration; trigger bookkeeping is left untouched."""

    @abstractmethod
    async def record_trigger(self, rule_id: str, triggered_at: datetime) -> Optional[AlertRule]:
        """Increment the trigger count. Returns None if the rule no longer exists."""

    @abstractmethod
    async def delete(self, rule_id: str) -> bool:
        ...

    @abstractmethod
    async def delete_for_target(self, target_id: str) -> int:
        ...


class AlertEventRepository(ABC):
    """Storage for raised alert events."""

    @abstractmethod
    async def add(self, event: AlertEvent) -> AlertEvent:
        ...

    @abstractmethod
    async def get(self, event_id: str) -> Optional[AlertEvent]:
        ...

    @abstractmethod
    async def list(self, limit: int = 50, target_id: Optional[str] = None) -> List[AlertEvent]:
        """Most recent events first."""

    @abstractmethod
    async def save(self, event: AlertEvent) -> bool:
        ...

    @abstractmethod
    async def trim(self, keep: int) -> int:
        """Keep only the newest `keep` events."""
