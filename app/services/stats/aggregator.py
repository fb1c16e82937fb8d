"""Stats aggregator: dashboard rollups over the call session store."""
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from app.services.call_session.models import CallSession
from app.services.call_session.store import CallSessionStore
from app.services.stats.models import CallStats, DailyStat, RecentCall

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_duration(ms: int) -> str:
    """Format milliseconds as '1h 5m', '3m 12s' or '42s'."""
    seconds = max(0, ms) // 1000
    minutes = seconds // 60
    if minutes >= 60:
        return f"{minutes // 60}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


class StatsAggregator:
    """Read-only projection of the session store for the dashboard.

    Totals, averages, outcomes and daily buckets cover finished calls only;
    calls still in progress are reported through ``active_calls`` and
    ``active_duration_ms`` and appear in ``recent_calls``.
    """

    def __init__(
        self,
        store: CallSessionStore,
        reporting_timezone: str = "UTC",
        recent_calls_limit: int = 20,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.timezone = ZoneInfo(reporting_timezone)
        self.recent_calls_limit = recent_calls_limit
        self._clock = clock

    def snapshot(self, now: Optional[datetime] = None) -> CallStats:
        """Compute the current stats from a snapshot of the store."""
        now = now or self._clock()
        sessions = self.store.list_all()
        closed = [s for s in sessions if s.is_terminal]
        active = [s for s in sessions if not s.is_terminal]

        total_calls = len(closed)
        total_duration_ms = sum(s.duration_ms() for s in closed)
        total_turns = sum(s.turn_count for s in closed)

        stats = CallStats(
            total_calls=total_calls,
            total_duration_ms=total_duration_ms,
            total_duration_formatted=format_duration(total_duration_ms),
            total_turns=total_turns,
            avg_duration_ms=round(total_duration_ms / total_calls) if total_calls else 0,
            avg_turns_per_call=round(total_turns / total_calls, 1) if total_calls else 0.0,
            active_calls=len(active),
            active_duration_ms=sum(s.duration_ms(now) for s in active),
            outcomes=dict(Counter(s.outcome.value for s in closed)),
            recent_calls=self._recent_calls(sessions, now),
            daily_stats=self._daily_stats(closed),
        )
        logger.debug(
            f"[STATS] Snapshot computed - closed: {total_calls}, active: {len(active)}"
        )
        return stats

    def _recent_calls(self, sessions: List[CallSession], now: datetime) -> List[RecentCall]:
        newest_first = sorted(sessions, key=lambda s: s.start_time, reverse=True)
        recent = []
        for session in newest_first[: self.recent_calls_limit]:
            duration_ms = session.duration_ms(now)
            recent.append(
                RecentCall(
                    call_id=session.session_id,
                    caller_id=session.caller_id,
                    start_time=session.start_time.isoformat(),
                    duration=format_duration(duration_ms),
                    duration_ms=duration_ms,
                    turn_count=session.turn_count,
                    outcome=session.outcome.value,
                )
            )
        return recent

    def _daily_stats(self, closed: List[CallSession]) -> List[DailyStat]:
        buckets: Dict[str, DailyStat] = {}
        for session in closed:
            day = session.start_time.astimezone(self.timezone).date().isoformat()
            bucket = buckets.get(day)
            if bucket is None:
                bucket = buckets[day] = DailyStat(date=day, calls=0, duration_ms=0, turns=0)
            bucket.calls += 1
            bucket.duration_ms += session.duration_ms()
            bucket.turns += session.turn_count
        # ISO dates sort chronologically
        return [buckets[day] for day in sorted(buckets)]
