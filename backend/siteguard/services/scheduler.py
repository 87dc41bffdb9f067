"""Scheduler service - drives periodic checks for every monitored target.

Design:
- A single APScheduler interval job ("tick", every 5 seconds by default) with
  max_instances=1, so ticks never overlap
- Each tick dispatches the targets that are due as immutable CheckRequests,
  one asyncio task per target, bounded by a semaphore; the tick returns
  without waiting for them
- An in-flight set guarantees at most one probe per target
- Visual checks run as background tasks and never hold up a tick
- Uncaught pipeline errors feed a circuit breaker: after too many in a row
  the tick job is paused, cooled down and resumed with the counter reset
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..domain import AlertRule, CheckResult, ImageStatus, RuleKind, Target, TargetStatus
from ..errors import ErrorKind, TransientSchedulerError
from ..repositories import Repositories
from .alerter import AlertEvaluator
from .comparator import ImageComparator, ScreenshotCapture
from .ledger import UptimeLedger
from .prober import CertificateInspector, ProbeResult, ProberService

logger = logging.getLogger(__name__)

TICK_JOB_ID = "monitoring_tick"

# Rule kinds evaluated right after a probe; visual_change waits for the visual check
PROBE_RULE_KINDS = (RuleKind.DOWNTIME, RuleKind.RESPONSE_TIME, RuleKind.SSL_EXPIRY)

OutcomeListener = Callable[[Target, CheckResult], Awaitable[None]]


@dataclass(frozen=True)
class CheckRequest:
    """Snapshot of what to check, taken when the target is dispatched."""
    target_id: str
    name: str
    url: str
    dispatched_at: datetime
    check_ssl: bool = False


@dataclass(frozen=True)
class CheckOutcome:
    """What a check produced, applied back to the target by the scheduler."""
    request: CheckRequest
    probe: ProbeResult
    completed_at: datetime
    ssl_days: Optional[int] = None

    @property
    def status(self) -> TargetStatus:
        return TargetStatus.UP if self.probe.reachable else TargetStatus.DOWN


@dataclass(frozen=True)
class SchedulerHealth:
    """Snapshot of the scheduler's own state."""
    is_active: bool
    is_paused: bool
    consecutive_errors: int
    max_consecutive_errors: int
    total_targets: int
    last_check_time: Optional[datetime]
    needs_recovery: bool
    recoveries: int
    in_flight: int


def is_due(target: Target, now: datetime) -> bool:
    """Never checked, or the check interval has elapsed."""
    if target.last_checked is None:
        return True
    return (now - target.last_checked).total_seconds() >= target.check_interval


class MonitoringScheduler:
    """Schedules checks, applies their outcomes and guards against error storms."""

    def __init__(
        self,
        repositories: Repositories,
        ledger: UptimeLedger,
        alerts: AlertEvaluator,
        prober: Optional[ProberService] = None,
        comparator: Optional[ImageComparator] = None,
        capture: Optional[ScreenshotCapture] = None,
        certificate_inspector: Optional[CertificateInspector] = None,
        tick_seconds: Optional[int] = None,
        max_concurrent_checks: Optional[int] = None,
        max_consecutive_errors: Optional[int] = None,
        recovery_cooldown_seconds: Optional[float] = None,
        ssl_check_interval_hours: Optional[int] = None,
        listener: Optional[OutcomeListener] = None,
    ):
        self.repositories = repositories
        self.ledger = ledger
        self.alerts = alerts
        self.prober = prober or ProberService()
        self.comparator = comparator or ImageComparator()
        self.capture = capture
        self.certificate_inspector = certificate_inspector or CertificateInspector()
        self.listener = listener

        self.tick_seconds = tick_seconds or settings.tick_seconds
        self.max_concurrent_checks = max_concurrent_checks or settings.max_concurrent_checks
        self.max_consecutive_errors = max_consecutive_errors or settings.max_consecutive_errors
        self.recovery_cooldown_seconds = max(
            1.0,
            recovery_cooldown_seconds if recovery_cooldown_seconds is not None
            else settings.recovery_cooldown_seconds,
        )
        self.ssl_check_interval = timedelta(
            hours=ssl_check_interval_hours or settings.ssl_check_interval_hours
        )

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._semaphore = asyncio.Semaphore(self.max_concurrent_checks)
        self._in_flight: Set[str] = set()
        self._background: Set[asyncio.Task] = set()

        self._error_lock = asyncio.Lock()
        self._consecutive_errors = 0
        self._recoveries = 0
        self._recovery_task: Optional[asyncio.Task] = None
        self._last_tick_at: Optional[datetime] = None

    # Lifecycle

    def start(self):
        """Start ticking. A first tick runs immediately."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._tick_job,
            trigger=IntervalTrigger(seconds=self.tick_seconds),
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=self.tick_seconds,
            next_run_time=datetime.now(),
        )
        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (tick={self.tick_seconds}s, "
            f"max_concurrent={self.max_concurrent_checks})"
        )

    def stop(self):
        """Stop ticking. In-flight checks still complete and are recorded.

        A pending recovery is abandoned and the error counter cleared, so a
        restarted scheduler begins healthy.
        """
        if self._recovery_task is not None and not self._recovery_task.done():
            self._recovery_task.cancel()
        self._recovery_task = None
        self._consecutive_errors = 0

        if not self._running:
            return

        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None
        self._running = False
        logger.info("Scheduler stopped")

    def is_active(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._recovery_task is not None and not self._recovery_task.done()

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    @property
    def recoveries(self) -> int:
        return self._recoveries

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    async def wait_idle(self):
        """Wait for in-flight checks and background visual checks to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # Ticking

    async def _tick_job(self):
        try:
            await self.run_tick()
        except Exception as e:
            logger.error(f"Error running checks: {type(e).__name__}: {e}")
            await self._record_error(TransientSchedulerError(f"Tick failed: {e}"))

    async def run_tick(self) -> List[str]:
        """Dispatch every due target and return the dispatched ids.

        Checks run as background tasks; a slow target never delays the next
        tick for the others. Use wait_idle() to wait for them.
        """
        if self.is_paused:
            logger.debug("Tick skipped: scheduler is cooling down")
            return []

        now = datetime.utcnow()
        self._last_tick_at = now

        targets = await self.repositories.targets.list()
        due = [t for t in targets if t.id not in self._in_flight and is_due(t, now)]
        if not due:
            return []

        rules_by_target: Dict[str, List[AlertRule]] = {}
        for rule in await self.repositories.rules.list():
            rules_by_target.setdefault(rule.target_id, []).append(rule)

        requests = []
        for target in due:
            self._in_flight.add(target.id)
            requests.append(CheckRequest(
                target_id=target.id,
                name=target.name,
                url=target.url,
                dispatched_at=now,
                check_ssl=self._needs_ssl_check(target, rules_by_target.get(target.id, []), now),
            ))

        logger.debug(f"Checking {len(due)} due targets out of {len(targets)} total")
        self._spawn(self._run_batch(requests))
        return [r.target_id for r in requests]

    async def _run_batch(self, requests: List[CheckRequest]):
        # Only a batch with no failures clears the error counter
        results = await asyncio.gather(*[self._run_request(r) for r in requests])
        if all(results):
            await self._tick_succeeded()

    async def _run_request(self, request: CheckRequest) -> bool:
        """Run one target's pipeline. Returns False when it raised."""
        try:
            await self._mark_checking(request.target_id)
            async with self._semaphore:
                outcome = await self._execute(request)
            await self._apply(outcome)
            return True
        except Exception as e:
            logger.error(f"Error checking target {request.name} ({request.target_id}): {type(e).__name__}: {e}")
            await self._mark_failed(request, e)
            await self._record_error(TransientSchedulerError(str(e), target_id=request.target_id))
            return False
        finally:
            self._in_flight.discard(request.target_id)

    def _needs_ssl_check(self, target: Target, rules: List[AlertRule], now: datetime) -> bool:
        wants_ssl = any(r.enabled and r.kind == RuleKind.SSL_EXPIRY for r in rules)
        if not wants_ssl:
            return False
        if target.ssl_checked_at is None:
            return True
        return now - target.ssl_checked_at >= self.ssl_check_interval

    async def _mark_checking(self, target_id: str):
        await self.repositories.targets.update_status(target_id, status=TargetStatus.CHECKING)

    async def _execute(self, request: CheckRequest) -> CheckOutcome:
        probe = await self.prober.probe(request.url)
        ssl_days = None
        if request.check_ssl:
            ssl_days = await self.certificate_inspector.days_until_expiry(request.url)
        return CheckOutcome(
            request=request,
            probe=probe,
            completed_at=datetime.utcnow(),
            ssl_days=ssl_days,
        )

    async def _apply(self, outcome: CheckOutcome):
        """Record the outcome, update the target and evaluate probe-driven alerts."""
        request = outcome.request
        probe = outcome.probe
        status = outcome.status

        target = await self.repositories.targets.get(request.target_id)
        if target is None:
            logger.debug(f"Target {request.target_id} removed during check, discarding result")
            return

        uptime = await self.ledger.uptime_with(request.target_id, status)
        result = CheckResult(
            target_id=request.target_id,
            checked_at=outcome.completed_at,
            response_time_ms=probe.response_time_ms if probe.reachable else 0,
            status=status,
            uptime=uptime,
            status_code=probe.status_code,
            error_kind=probe.error_kind,
            detail=probe.detail,
        )
        await self.ledger.record(request.target_id, result)

        fields = dict(
            status=status,
            response_time_ms=result.response_time_ms,
            uptime=uptime,
            last_checked=result.checked_at,
            status_detail=probe.detail,
        )
        if request.check_ssl:
            fields.update(ssl_expiry_days=outcome.ssl_days, ssl_checked_at=outcome.completed_at)
        run_visual = (
            probe.reachable
            and target.image_monitoring
            and bool(target.reference_snapshots)
            and self.capture is not None
        )
        if run_visual:
            fields["image_status"] = ImageStatus.CHECKING

        target = await self.repositories.targets.update_status(request.target_id, **fields)
        if target is None:
            return

        logger.debug(f"Target {target.name}: {status.value} ({result.response_time_ms}ms)")

        history = await self.ledger.history(target.id)
        await self.alerts.process(target, history, ssl_days=outcome.ssl_days, kinds=PROBE_RULE_KINDS)

        if run_visual and target.image_monitoring:
            self._spawn(self._visual_check(target.id))

        await self._notify_listener(target, result)

    async def _visual_check(self, target_id: str):
        try:
            target = await self.repositories.targets.get(target_id)
            if target is None or not target.image_monitoring:
                return
            verdict = await self.comparator.check_target(target, self.capture)

            # The target may have changed while the page was captured
            target = await self.repositories.targets.update_status(
                target_id,
                image_status=verdict.status,
                last_image_check=verdict.checked_at,
            )
            if target is None or not target.image_monitoring:
                return

            if verdict.error:
                logger.warning(f"Visual check for {target.name} finished with errors: {verdict.error}")

            history = await self.ledger.history(target_id)
            await self.alerts.process(target, history, kinds=(RuleKind.VISUAL_CHANGE,))
        except Exception as e:
            logger.error(f"Visual check failed for target {target_id}: {type(e).__name__}: {e}")
            await self._record_error(TransientSchedulerError(str(e), target_id=target_id))

    async def _mark_failed(self, request: CheckRequest, error: Exception):
        """An uncaught pipeline error leaves the target down with response time 0."""
        try:
            if await self.repositories.targets.get(request.target_id) is None:
                return
            uptime = await self.ledger.uptime_with(request.target_id, TargetStatus.DOWN)
            now = datetime.utcnow()
            result = CheckResult(
                target_id=request.target_id,
                checked_at=now,
                response_time_ms=0,
                status=TargetStatus.DOWN,
                uptime=uptime,
                error_kind=ErrorKind.TRANSIENT_SCHEDULER_ERROR,
                detail=f"Check failed: {error}",
            )
            await self.ledger.record(request.target_id, result)

            target = await self.repositories.targets.update_status(
                request.target_id,
                status=TargetStatus.DOWN,
                response_time_ms=0,
                uptime=uptime,
                last_checked=now,
                status_detail=result.detail,
            )
            if target is None:
                return
            await self._notify_listener(target, result)
        except Exception as e:
            logger.error(f"Could not mark target {request.target_id} down: {type(e).__name__}: {e}")

    async def _notify_listener(self, target: Target, result: CheckResult):
        if self.listener is None:
            return
        try:
            await self.listener(target, result)
        except Exception as e:
            logger.warning(f"Outcome listener failed for {target.name}: {e}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # Circuit breaker

    async def _record_error(self, error: TransientSchedulerError):
        async with self._error_lock:
            self._consecutive_errors += 1
            count = self._consecutive_errors
            trip = count >= self.max_consecutive_errors and not self.is_paused
            if trip:
                self._begin_recovery()
        logger.debug(f"{error.kind.value} #{count}: {error}")

    async def _tick_succeeded(self):
        async with self._error_lock:
            if self._consecutive_errors and not self.is_paused:
                self._consecutive_errors = 0

    def _begin_recovery(self):
        logger.warning(
            f"Too many consecutive errors ({self._consecutive_errors}), "
            f"pausing checks for {self.recovery_cooldown_seconds:g}s"
        )
        if self._running and self.scheduler is not None:
            self.scheduler.pause_job(TICK_JOB_ID)
        self._recovery_task = asyncio.ensure_future(self._recover())

    async def _recover(self):
        await asyncio.sleep(self.recovery_cooldown_seconds)
        async with self._error_lock:
            self._consecutive_errors = 0
            self._recoveries += 1
        if self._running and self.scheduler is not None:
            self.scheduler.resume_job(TICK_JOB_ID)
        logger.warning(f"Scheduler recovered, resuming checks (recoveries={self._recoveries})")

    async def reset_errors(self):
        """Clear the consecutive error counter."""
        async with self._error_lock:
            self._consecutive_errors = 0
        logger.info("Scheduler error counter reset")

    async def health(self) -> SchedulerHealth:
        targets = await self.repositories.targets.list()
        return SchedulerHealth(
            is_active=self._running,
            is_paused=self.is_paused,
            consecutive_errors=self._consecutive_errors,
            max_consecutive_errors=self.max_consecutive_errors,
            total_targets=len(targets),
            last_check_time=self._last_tick_at,
            needs_recovery=self.is_paused or self._consecutive_errors >= self.max_consecutive_errors,
            recoveries=self._recoveries,
            in_flight=len(self._in_flight),
        )
