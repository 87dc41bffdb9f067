"""Database models."""
from .target import TargetRecord, SnapshotRecord
from .check_result import CheckResultRecord
from .alert_rule import AlertRuleRecord
from .alert_event import AlertEventRecord

__all__ = ["TargetRecord", "SnapshotRecord", "CheckResultRecord", "AlertRuleRecord", "AlertEventRecord"]
