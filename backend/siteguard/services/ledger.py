"""Uptime/history ledger - bounded per-target check history and aggregates."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..config import settings
from ..domain import CheckResult, Target, TargetStatus
from ..repositories import HistoryRepository

logger = logging.getLogger(__name__)

# Floor for chart values when carrying forward or synthesizing
MIN_CHART_RESPONSE_MS = 50

# Base response time for synthetic series when the target has none yet
DEFAULT_SYNTHETIC_RESPONSE_MS = 200


@dataclass(frozen=True)
class ResponseTimePoint:
    """One hourly bucket for response time charts."""
    time: str  # HH:MM label
    timestamp: datetime
    response_time_ms: int


@dataclass(frozen=True)
class ResponseTimeStats:
    """Response time aggregates over a window."""
    count: int
    avg_ms: Optional[float] = None
    min_ms: Optional[int] = None
    max_ms: Optional[int] = None
    p95_ms: Optional[int] = None


def _time_of_day_multiplier(hour: int) -> float:
    """Business hours are faster, nights slower."""
    if 9 <= hour <= 17:
        return 0.8
    if hour >= 22 or hour <= 6:
        return 1.3
    return 1.0


def compute_uptime(results: List[CheckResult]) -> float:
    """Percentage of up results; 100 when there are none."""
    if not results:
        return 100.0
    up_count = sum(1 for r in results if r.status == TargetStatus.UP)
    return (up_count / len(results)) * 100


class UptimeLedger:
    """Append-only check history with lazy eviction.

    Appends are serialized by a lock; eviction of entries older than the
    window (or beyond the per-target cap) happens on each write.
    """

    def __init__(
        self,
        repository: HistoryRepository,
        window_hours: Optional[int] = None,
        max_entries: Optional[int] = None,
        uptime_sample_size: Optional[int] = None,
    ):
        self._repository = repository
        self.window_hours = window_hours or settings.history_window_hours
        self.max_entries = max_entries or settings.history_max_entries
        self.uptime_sample_size = uptime_sample_size or settings.uptime_sample_size
        self._lock = asyncio.Lock()

    async def record(self, target_id: str, result: CheckResult) -> CheckResult:
        """Append a result and evict expired entries for the target."""
        if result.target_id != target_id:
            raise ValueError(f"Result for {result.target_id} recorded under {target_id}")

        async with self._lock:
            await self._repository.append(result)
            cutoff = datetime.utcnow() - timedelta(hours=self.window_hours)
            dropped = await self._repository.evict(target_id, cutoff, self.max_entries)
        if dropped:
            logger.debug(f"Evicted {dropped} history entries for target {target_id}")
        return result

    async def rolling_uptime(self, target_id: str) -> float:
        """Uptime over the most recent checks (capped sample), 100.0 with no history."""
        recent = await self._repository.list_for(target_id, limit=self.uptime_sample_size)
        return compute_uptime(recent)

    async def uptime_with(self, target_id: str, status: TargetStatus) -> float:
        """Uptime as it will be once a result with `status` is appended."""
        recent = await self._repository.list_for(target_id, limit=self.uptime_sample_size - 1)
        statuses = [r.status for r in recent] + [status]
        up_count = sum(1 for s in statuses if s == TargetStatus.UP)
        return (up_count / len(statuses)) * 100

    async def history(self, target_id: str, window_hours: Optional[int] = None) -> List[CheckResult]:
        """Chronological results within the trailing window."""
        hours = window_hours if window_hours is not None else self.window_hours
        since = datetime.utcnow() - timedelta(hours=hours)
        return await self._repository.list_for(target_id, since=since)

    async def forget(self, target_id: str):
        """Drop all history for a removed target."""
        async with self._lock:
            await self._repository.delete_for(target_id)

    async def response_time_stats(self, target_id: str, window_hours: Optional[int] = None) -> ResponseTimeStats:
        """Aggregates over up results in the window."""
        results = await self.history(target_id, window_hours)
        times = sorted(r.response_time_ms for r in results if r.status == TargetStatus.UP)
        if not times:
            return ResponseTimeStats(count=0)

        p95_index = max(0, int(round(0.95 * len(times))) - 1)
        return ResponseTimeStats(
            count=len(times),
            avg_ms=round(sum(times) / len(times), 2),
            min_ms=times[0],
            max_ms=times[-1],
            p95_ms=times[p95_index],
        )

    async def response_time_history(
        self,
        target: Optional[Target],
        target_id: str,
        hours: int = 24,
        now: Optional[datetime] = None,
    ) -> List[ResponseTimePoint]:
        """Hourly response times for charts, oldest first.

        Produces hours + 1 buckets ending at `now`. Empty buckets carry the
        previous value forward. Without any real history the series is
        synthesized from the target's current response time so charts never
        show a gap; unknown targets with no history give an empty list.
        """
        now = now or datetime.utcnow()
        since = now - timedelta(hours=hours)
        results = await self._repository.list_for(target_id, since=since)

        bucket_starts = [now - timedelta(hours=i) for i in range(hours, -1, -1)]

        if not results:
            if target is None:
                return []
            return self._synthetic_series(target, bucket_starts)

        buckets: Dict[int, List[int]] = {}
        for r in results:
            index = int((r.checked_at - since).total_seconds() // 3600)
            index = min(max(index, 0), hours)
            buckets.setdefault(index, []).append(r.response_time_ms)

        fallback = max(MIN_CHART_RESPONSE_MS, target.response_time_ms if target else 0)
        points: List[ResponseTimePoint] = []
        for i, start in enumerate(bucket_starts):
            values = buckets.get(i)
            if values:
                value = round(sum(values) / len(values))
            elif points:
                value = points[-1].response_time_ms
            else:
                value = fallback
            points.append(ResponseTimePoint(
                time=start.strftime("%H:%M"),
                timestamp=start,
                response_time_ms=int(value),
            ))
        return points

    def _synthetic_series(self, target: Target, bucket_starts: List[datetime]) -> List[ResponseTimePoint]:
        base = target.response_time_ms or DEFAULT_SYNTHETIC_RESPONSE_MS
        return [
            ResponseTimePoint(
                time=start.strftime("%H:%M"),
                timestamp=start,
                response_time_ms=max(
                    MIN_CHART_RESPONSE_MS,
                    round(base * _time_of_day_multiplier(start.hour)),
                ),
            )
            for start in bucket_starts
        ]
