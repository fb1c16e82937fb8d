"""Dashboard stats response models."""
from typing import Dict, List

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecentCall(_CamelModel):
    """One row of the recent-calls table."""

    call_id: str
    caller_id: str
    start_time: str
    duration: str
    duration_ms: int
    turn_count: int
    outcome: str


class DailyStat(_CamelModel):
    """Finished calls bucketed by reporting-timezone calendar date."""

    date: str
    calls: int
    duration_ms: int
    turns: int


class CallStats(_CamelModel):
    """Point-in-time snapshot polled by the dashboard."""

    total_calls: int
    total_duration_ms: int
    total_duration_formatted: str
    total_turns: int
    avg_duration_ms: int
    avg_turns_per_call: float
    active_calls: int
    active_duration_ms: int
    outcomes: Dict[str, int]
    recent_calls: List[RecentCall]
    daily_stats: List[DailyStat]
