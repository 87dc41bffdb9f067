"""Wires repositories and services into one monitoring engine."""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from .repositories import Repositories
from .services.alerter import AlertEvaluator
from .services.comparator import ImageComparator, ScreenshotCapture
from .services.ledger import UptimeLedger
from .services.notifier import Notifier
from .services.prober import CertificateInspector, ProberService
from .services.scheduler import MonitoringScheduler, OutcomeListener
from .services.status import StatusService
from .services.store import TargetStore

logger = logging.getLogger(__name__)


@dataclass
class MonitoringEngine:
    repositories: Repositories
    ledger: UptimeLedger
    alerts: AlertEvaluator
    scheduler: MonitoringScheduler
    store: TargetStore
    status: StatusService


def build_engine(
    repositories: Repositories,
    notifier: Optional[Notifier] = None,
    prober: Optional[ProberService] = None,
    capture: Optional[ScreenshotCapture] = None,
    comparator: Optional[ImageComparator] = None,
    certificate_inspector: Optional[CertificateInspector] = None,
    listener: Optional[OutcomeListener] = None,
    **scheduler_options,
) -> MonitoringEngine:
    """Assemble an engine around the given repositories.

    Extra keyword arguments (tick_seconds, max_consecutive_errors, ...) go to
    the scheduler.
    """
    ledger = UptimeLedger(repositories.history)
    alerts = AlertEvaluator(repositories.rules, repositories.events, notifier)
    scheduler = MonitoringScheduler(
        repositories,
        ledger,
        alerts,
        prober=prober,
        comparator=comparator,
        capture=capture,
        certificate_inspector=certificate_inspector,
        listener=listener,
        **scheduler_options,
    )
    return MonitoringEngine(
        repositories=repositories,
        ledger=ledger,
        alerts=alerts,
        scheduler=scheduler,
        store=TargetStore(repositories, ledger),
        status=StatusService(repositories.targets, ledger, scheduler),
    )


def get_engine(request: Request) -> MonitoringEngine:
    """FastAPI dependency returning the application's engine."""
    return request.app.state.engine
