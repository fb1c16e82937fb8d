"""Database models."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Call(Base):
    """Archived call metrics. Holds no caller-supplied content."""

    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    call_sid = Column(String, unique=True, index=True, nullable=False)
    caller_id = Column(String, default="unknown", nullable=False)
    started_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    turn_count = Column(Integer, default=0, nullable=False)
    outcome = Column(String, default="in_progress", nullable=False, index=True)  # in_progress, caller_hangup, max_turns, silence_timeout, error
