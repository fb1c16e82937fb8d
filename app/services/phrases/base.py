"""Phrase bank model and provider interface."""
from abc import ABC, abstractmethod
from typing import List

from pydantic import BaseModel, field_validator

from app.services.call_session.models import CallOutcome


class PhraseBank(BaseModel):
    """Pools of lines the engine can speak.

    Every pool must hold at least one non-blank line so the engine can always
    produce a prompt.
    """

    greetings: List[str]
    stall_phrases: List[str]
    reengagement_prompts: List[str]
    silence_closings: List[str]
    max_turns_closings: List[str]
    hangup_closings: List[str]
    error_closings: List[str]

    model_config = {"frozen": True}

    @field_validator("*")
    @classmethod
    def _non_empty_pool(cls, value: List[str]) -> List[str]:
        cleaned = [line.strip() for line in value if line and line.strip()]
        if not cleaned:
            raise ValueError("phrase pool must contain at least one non-blank line")
        return cleaned

    def closings_for(self, outcome: CallOutcome) -> List[str]:
        """Get the closing-line pool for a terminal outcome."""
        if outcome == CallOutcome.SILENCE_TIMEOUT:
            return self.silence_closings
        if outcome == CallOutcome.MAX_TURNS:
            return self.max_turns_closings
        if outcome == CallOutcome.CALLER_HANGUP:
            return self.hangup_closings
        return self.error_closings

    def with_extra_stalls(self, phrases: List[str]) -> "PhraseBank":
        """Return a copy of the bank with additional, de-duplicated stall phrases."""
        existing = {p.lower() for p in self.stall_phrases}
        extra = []
        for phrase in phrases:
            phrase = phrase.strip()
            if phrase and phrase.lower() not in existing:
                existing.add(phrase.lower())
                extra.append(phrase)
        return self.model_copy(update={"stall_phrases": self.stall_phrases + extra})


class PhraseProvider(ABC):
    """Abstract base class for phrase bank providers."""

    @abstractmethod
    async def get_phrase_bank(self) -> PhraseBank:
        """Get the phrase bank."""
        pass
