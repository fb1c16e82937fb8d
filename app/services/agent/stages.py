"""Conversation stage enumeration."""
from enum import Enum

from app.services.call_session.models import CallSession


class ConversationStage(str, Enum):
    """Conversation stages for the stalling flow."""

    GREETING = "greeting"  # No caller turns yet
    ENGAGED = "engaged"  # Caller is talking, we keep stalling
    CLOSING = "closing"  # Terminal decision made, goodbye being spoken
    TERMINATED = "terminated"  # Outcome recorded, call over

    def __str__(self) -> str:
        """Return the string value of the stage."""
        return self.value


def stage_for(session: CallSession) -> ConversationStage:
    """Derive the resting stage of a session from its counters and outcome."""
    if session.is_terminal:
        return ConversationStage.TERMINATED
    if session.turn_count == 0:
        return ConversationStage.GREETING
    return ConversationStage.ENGAGED
