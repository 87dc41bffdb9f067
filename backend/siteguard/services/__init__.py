"""Services for probing, comparing, scheduling, and alerting."""
from .prober import ProberService, CertificateInspector
from .comparator import ImageComparator, PlaywrightCapture
from .ledger import UptimeLedger
from .scheduler import MonitoringScheduler
from .alerter import AlertEvaluator
from .notifier import ChannelNotifier, LoggingNotifier
from .store import TargetStore
from .status import StatusService
from .websocket_manager import ConnectionManager

__all__ = [
    "ProberService",
    "CertificateInspector",
    "ImageComparator",
    "PlaywrightCapture",
    "UptimeLedger",
    "MonitoringScheduler",
    "AlertEvaluator",
    "ChannelNotifier",
    "LoggingNotifier",
    "TargetStore",
    "StatusService",
    "ConnectionManager",
]
