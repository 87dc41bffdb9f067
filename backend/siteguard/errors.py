"""Error taxonomy for the monitoring engine."""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classified failure kinds carried on result values."""
    INVALID_URL = "InvalidUrl"
    TIMEOUT = "Timeout"
    NETWORK_ERROR = "NetworkError"
    COMPARATOR_FAILURE = "ComparatorFailure"
    NOTIFIER_FAILURE = "NotifierFailure"
    TRANSIENT_SCHEDULER_ERROR = "TransientSchedulerError"


class SiteGuardError(Exception):
    """Base class for all engine errors."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, target_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.target_id = target_id

    def __str__(self) -> str:
        if self.target_id:
            return f"{self.message} (target {self.target_id})"
        return self.message


class ComparatorFailure(SiteGuardError):
    """Image decoding or comparison failed."""
    kind = ErrorKind.COMPARATOR_FAILURE


class CaptureFailure(ComparatorFailure):
    """Screenshot capture failed."""


class NotifierFailure(SiteGuardError):
    """A notification could not be delivered."""
    kind = ErrorKind.NOTIFIER_FAILURE


class TransientSchedulerError(SiteGuardError):
    """Uncaught fault in a target's check pipeline, counted by the circuit breaker."""
    kind = ErrorKind.TRANSIENT_SCHEDULER_ERROR


class TargetValidationError(SiteGuardError):
    """Target or alert rule input failed validation."""
