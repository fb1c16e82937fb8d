"""Engine input and output models."""
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.core.exceptions import InvalidCallbackError
from app.services.agent.stages import ConversationStage
from app.services.call_session.models import CallOutcome


class CallbackInput(BaseModel):
    """One webhook callback, as seen by the conversation engine."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str = Field(min_length=1)
    caller_id: Optional[str] = None
    recognized_speech: Optional[str] = None
    speech_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    is_initial_contact: bool = False

    @field_validator("session_id")
    @classmethod
    def _strip_session_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("session_id must not be blank")
        return value

    def has_speech(self, min_confidence: float = 0.0) -> bool:
        """Whether this callback carries a usable utterance."""
        if not self.recognized_speech or not self.recognized_speech.strip():
            return False
        if self.speech_confidence is not None and self.speech_confidence < min_confidence:
            return False
        return True


class EngineDecision(BaseModel):
    """What to say next and whether to keep the call open."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt_text: str = Field(min_length=1)
    continue_call: bool
    outcome: CallOutcome
    stage: ConversationStage

    @model_validator(mode="after")
    def _continue_matches_outcome(self) -> "EngineDecision":
        if self.continue_call != (self.outcome == CallOutcome.IN_PROGRESS):
            raise ValueError("continue_call must be true exactly while the call is in progress")
        return self


def parse_callback(payload: Mapping[str, Any]) -> CallbackInput:
    """Validate a raw callback mapping.

    Malformed speech fields degrade the callback to silence. Raises
    InvalidCallbackError only when no usable session id is present.
    """
    try:
        return CallbackInput.model_validate(dict(payload))
    except ValidationError as e:
        session_id = payload.get("sessionId", payload.get("session_id"))
        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidCallbackError(f"Callback has no usable session id: {e}") from e

        caller_id = payload.get("callerId", payload.get("caller_id"))
        is_initial = payload.get("isInitialContact", payload.get("is_initial_contact", False))
        return CallbackInput(
            session_id=session_id,
            caller_id=caller_id if isinstance(caller_id, str) else None,
            is_initial_contact=is_initial if isinstance(is_initial, bool) else False,
        )
