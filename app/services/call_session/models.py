"""Call session models."""
from datetime import datetime
from enum import Enum
from typing import Optional, Set

from pydantic import BaseModel, Field

UNKNOWN_CALLER = "unknown"


class CallOutcome(str, Enum):
    """Classification of how a call ended."""

    IN_PROGRESS = "in_progress"
    CALLER_HANGUP = "caller_hangup"
    MAX_TURNS = "max_turns"
    SILENCE_TIMEOUT = "silence_timeout"
    ERROR = "error"

    def __str__(self) -> str:
        """Return the string value of the outcome."""
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self is not CallOutcome.IN_PROGRESS


class CallSession(BaseModel):
    """State of one phone call, from first contact to termination.

    Holds call metrics only. Nothing the caller says is stored here.
    """

    session_id: str
    caller_id: str = UNKNOWN_CALLER
    start_time: datetime
    end_time: Optional[datetime] = None
    turn_count: int = 0
    consecutive_silence_count: int = 0
    outcome: CallOutcome = CallOutcome.IN_PROGRESS
    used_phrase_indices: Set[int] = Field(default_factory=set)
    last_phrase_index: Optional[int] = None
    closing_prompt: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.outcome.is_terminal

    def terminate(self, outcome: CallOutcome, ended_at: datetime, closing_prompt: str) -> bool:
        """Record a terminal outcome.

        The outcome is write-once: returns False (and changes nothing) if the
        session has already ended.
        """
        if not outcome.is_terminal:
            raise ValueError(f"{outcome} is not a terminal outcome")
        if self.is_terminal:
            return False
        self.outcome = outcome
        self.end_time = ended_at
        self.closing_prompt = closing_prompt
        return True

    def duration_ms(self, now: Optional[datetime] = None) -> int:
        """Call duration in milliseconds; elapsed-so-far for active calls."""
        end = self.end_time or now
        if end is None:
            return 0
        return max(0, int((end - self.start_time).total_seconds() * 1000))
