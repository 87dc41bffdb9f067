"""SQLAlchemy-backed repositories (SQLite or PostgreSQL)."""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..domain import (
    AlertEvent,
    AlertRule,
    CheckResult,
    EventStatus,
    ImageStatus,
    ReferenceSnapshot,
    RuleKind,
    Severity,
    Target,
    TargetStatus,
)
from ..errors import ErrorKind
from ..models import AlertEventRecord, AlertRuleRecord, CheckResultRecord, SnapshotRecord, TargetRecord
from ..utils.db_utils import retry_on_lock
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

logger = logging.getLogger(__name__)


def _target_from_record(record: TargetRecord) -> Target:
    return Target(
        id=record.id,
        name=record.name,
        url=record.url,
        check_interval=record.check_interval,
        status=TargetStatus(record.status),
        uptime=record.uptime,
        response_time_ms=record.response_time_ms or 0,
        last_checked=record.last_checked,
        status_detail=record.status_detail,
        image_monitoring=bool(record.image_monitoring),
        reference_snapshots=[
            ReferenceSnapshot(label=s.label, data=s.data) for s in record.snapshots
        ],
        image_status=ImageStatus(record.image_status) if record.image_status else None,
        last_image_check=record.last_image_check,
        notify_email=record.notify_email,
        notify_phone=record.notify_phone,
        ssl_expiry_days=record.ssl_expiry_days,
        ssl_checked_at=record.ssl_checked_at,
        created_at=record.created_at,
    )


def _set_target_fields(record: TargetRecord, fields: Dict[str, Any]):
    """Copy the given target fields onto a row; only those columns are written."""
    for name, value in fields.items():
        if name == "reference_snapshots":
            current = [(s.label, s.data) for s in record.snapshots]
            wanted = [(s.label, s.data) for s in value]
            if current != wanted:
                record.snapshots = [
                    SnapshotRecord(position=i, label=label, data=data)
                    for i, (label, data) in enumerate(wanted)
                ]
        elif name in ("status", "image_status"):
            setattr(record, name, value.value if value is not None else None)
        elif name == "image_monitoring":
            record.image_monitoring = 1 if value else 0
        else:
            setattr(record, name, value)


def _result_from_record(record: CheckResultRecord) -> CheckResult:
    return CheckResult(
        target_id=record.target_id,
        checked_at=record.checked_at,
        response_time_ms=record.response_time_ms or 0,
        status=TargetStatus(record.status),
        uptime=record.uptime,
        status_code=record.status_code,
        error_kind=ErrorKind(record.error_kind) if record.error_kind else None,
        detail=record.detail,
    )


def _rule_from_record(record: AlertRuleRecord) -> AlertRule:
    try:
        recipients = json.loads(record.recipients or "[]")
    except json.JSONDecodeError:
        recipients = []
    return AlertRule(
        id=record.id,
        target_id=record.target_id,
        kind=RuleKind(record.kind),
        name=record.name or "",
        threshold=record.threshold,
        enabled=bool(record.enabled),
        email=bool(record.email),
        sms=bool(record.sms),
        push=bool(record.push),
        recipients=recipients,
        trigger_count=record.trigger_count or 0,
        last_triggered=record.last_triggered,
    )


def _apply_rule(record: AlertRuleRecord, rule: AlertRule):
    record.target_id = rule.target_id
    record.name = rule.name
    record.kind = rule.kind.value
    record.threshold = rule.threshold
    record.enabled = 1 if rule.enabled else 0
    record.email = 1 if rule.email else 0
    record.sms = 1 if rule.sms else 0
    record.push = 1 if rule.push else 0
    record.recipients = json.dumps(rule.recipients)


def _event_from_record(record: AlertEventRecord) -> AlertEvent:
    return AlertEvent(
        id=record.id,
        rule_id=record.rule_id,
        target_id=record.target_id,
        target_name=record.target_name,
        kind=RuleKind(record.kind),
        message=record.message,
        severity=Severity(record.severity),
        status=EventStatus(record.status),
        created_at=record.created_at,
    )


class SqlTargetRepository(TargetRepository):
    """Targets stored in the `targets` and `reference_snapshots` tables."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def add(self, target: Target) -> Target:
        async with self._session_factory() as session:
            record = TargetRecord(id=target.id, created_at=target.created_at)
            record.snapshots = []
            _set_target_fields(record, {
                name: getattr(target, name) for name in CONFIG_FIELDS | STATUS_FIELDS
            })
            session.add(record)
            await retry_on_lock(session.commit)
        return target

    async def get(self, target_id: str) -> Optional[Target]:
        async with self._session_factory() as session:
            record = await session.get(TargetRecord, target_id)
            return _target_from_record(record) if record else None

    async def list(self) -> List[Target]:
        async with self._session_factory() as session:
            result = await session.execute(select(TargetRecord).order_by(TargetRecord.created_at))
            return [_target_from_record(r) for r in result.scalars().all()]

    async def update_status(self, target_id: str, **fields) -> Optional[Target]:
        check_fields(fields, STATUS_FIELDS)
        async with self._session_factory() as session:
            record = await session.get(TargetRecord, target_id)
            if record is None:
                return None
            if not record.image_monitoring:
                fields = {k: v for k, v in fields.items() if k not in VISUAL_FIELDS}
            _set_target_fields(record, fields)
            await retry_on_lock(session.commit)
            return _target_from_record(record)

    async def update_config(self, target_id: str, **fields) -> Optional[Target]:
        check_fields(fields, CONFIG_FIELDS)
        async with self._session_factory() as session:
            record = await session.get(TargetRecord, target_id)
            if record is None:
                return None
            _set_target_fields(record, fields)
            if not record.image_monitoring:
                record.image_status = None
            await retry_on_lock(session.commit)
            return _target_from_record(record)

    async def delete(self, target_id: str) -> bool:
        async with self._session_factory() as session:
            record = await session.get(TargetRecord, target_id)
            if record is None:
                return False
            await session.delete(record)
            await retry_on_lock(session.commit)
            return True


class SqlHistoryRepository(HistoryRepository):
    """Check results stored in the `check_results` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def append(self, result: CheckResult) -> None:
        async with self._session_factory() as session:
            session.add(CheckResultRecord(
                target_id=result.target_id,
                checked_at=result.checked_at,
                status=result.status.value,
                response_time_ms=result.response_time_ms,
                uptime=result.uptime,
                status_code=result.status_code,
                error_kind=result.error_kind.value if result.error_kind else None,
                detail=result.detail,
            ))
            await retry_on_lock(session.commit)

    async def list_for(
        self,
        target_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[CheckResult]:
        query = select(CheckResultRecord).where(CheckResultRecord.target_id == target_id)
        if since is not None:
            query = query.where(CheckResultRecord.checked_at >= since)
        if limit is not None:
            query = query.order_by(
                CheckResultRecord.checked_at.desc(), CheckResultRecord.id.desc()
            ).limit(limit)
        else:
            query = query.order_by(CheckResultRecord.checked_at, CheckResultRecord.id)

        async with self._session_factory() as session:
            result = await session.execute(query)
            records = list(result.scalars().all())

        if limit is not None:
            records.reverse()
        return [_result_from_record(r) for r in records]

    async def evict(self, target_id: str, older_than: datetime, keep_last: int) -> int:
        async with self._session_factory() as session:
            expired = await session.execute(
                delete(CheckResultRecord).where(
                    CheckResultRecord.target_id == target_id,
                    CheckResultRecord.checked_at < older_than,
                )
            )
            dropped = expired.rowcount or 0

            overflow = await session.execute(
                select(CheckResultRecord.id)
                .where(CheckResultRecord.target_id == target_id)
                .order_by(CheckResultRecord.checked_at.desc(), CheckResultRecord.id.desc())
                .offset(keep_last)
            )
            overflow_ids = list(overflow.scalars().all())
            if overflow_ids:
                await session.execute(
                    delete(CheckResultRecord).where(CheckResultRecord.id.in_(overflow_ids))
                )
                dropped += len(overflow_ids)

            await retry_on_lock(session.commit)
            return dropped

    async def delete_for(self, target_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(CheckResultRecord).where(CheckResultRecord.target_id == target_id)
            )
            await retry_on_lock(session.commit)


class SqlAlertRuleRepository(AlertRuleRepository):
    """Alert rules stored in the `alert_rules` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def add(self, rule: AlertRule) -> AlertRule:
        async with self._session_factory() as session:
            record = AlertRuleRecord(
                id=rule.id,
                trigger_count=rule.trigger_count,
                last_triggered=rule.last_triggered,
            )
            _apply_rule(record, rule)
            session.add(record)
            await retry_on_lock(session.commit)
        return rule

    async def get(self, rule_id: str) -> Optional[AlertRule]:
        async with self._session_factory() as session:
            record = await session.get(AlertRuleRecord, rule_id)
            return _rule_from_record(record) if record else None

    async def list(self, target_id: Optional[str] = None) -> List[AlertRule]:
        query = select(AlertRuleRecord)
        if target_id is not None:
            query = query.where(AlertRuleRecord.target_id == target_id)
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(AlertRuleRecord.id))
            return [_rule_from_record(r) for r in result.scalars().all()]

    async def save(self, rule: AlertRule) -> bool:
        async with self._session_factory() as session:
            record = await session.get(AlertRuleRecord, rule.id)
            if record is None:
                return False
            _apply_rule(record, rule)
            await retry_on_lock(session.commit)
            return True

    async def record_trigger(self, rule_id: str, triggered_at: datetime) -> Optional[AlertRule]:
        async with self._session_factory() as session:
            await session.execute(
                update(AlertRuleRecord)
                .where(AlertRuleRecord.id == rule_id)
                .values(
                    trigger_count=AlertRuleRecord.trigger_count + 1,
                    last_triggered=triggered_at,
                )
            )
            await retry_on_lock(session.commit)
            record = await session.get(AlertRuleRecord, rule_id)
            return _rule_from_record(record) if record else None

    async def delete(self, rule_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(AlertRuleRecord).where(AlertRuleRecord.id == rule_id)
            )
            await retry_on_lock(session.commit)
            return (result.rowcount or 0) > 0

    async def delete_for_target(self, target_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(AlertRuleRecord).where(AlertRuleRecord.target_id == target_id)
            )
            await retry_on_lock(session.commit)
            return result.rowcount or 0


class SqlAlertEventRepository(AlertEventRepository):
    """Alert events stored in the `alert_events` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def add(self, event: AlertEvent) -> AlertEvent:
        async with self._session_factory() as session:
            session.add(AlertEventRecord(
                id=event.id,
                rule_id=event.rule_id,
                target_id=event.target_id,
                target_name=event.target_name,
                kind=event.kind.value,
                message=event.message,
                severity=event.severity.value,
                status=event.status.value,
                created_at=event.created_at,
            ))
            await retry_on_lock(session.commit)
        return event

    async def get(self, event_id: str) -> Optional[AlertEvent]:
        async with self._session_factory() as session:
            record = await session.get(AlertEventRecord, event_id)
            return _event_from_record(record) if record else None

    async def list(self, limit: int = 50, target_id: Optional[str] = None) -> List[AlertEvent]:
        query = select(AlertEventRecord)
        if target_id is not None:
            query = query.where(AlertEventRecord.target_id == target_id)
        query = query.order_by(AlertEventRecord.created_at.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_event_from_record(r) for r in result.scalars().all()]

    async def save(self, event: AlertEvent) -> bool:
        async with self._session_factory() as session:
            record = await session.get(AlertEventRecord, event.id)
            if record is None:
                return False
            record.status = event.status.value
            record.message = event.message
            await retry_on_lock(session.commit)
            return True

    async def trim(self, keep: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AlertEventRecord.id)
                .order_by(AlertEventRecord.created_at.desc())
                .offset(keep)
            )
            doomed = list(result.scalars().all())
            if doomed:
                await session.execute(
                    delete(AlertEventRecord).where(AlertEventRecord.id.in_(doomed))
                )
                await retry_on_lock(session.commit)
            return len(doomed)
