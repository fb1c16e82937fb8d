"""In-memory phrase provider."""
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from app.core.exceptions import PhraseBankError
from app.services.phrases.base import PhraseBank, PhraseProvider

logger = logging.getLogger(__name__)


DEFAULT_PHRASE_BANK = PhraseBank(
    greetings=["Hello? Sorry, who is this?"],
    stall_phrases=[
        "Oh, I see. Hmm, let me think about that for a moment. Could you say that again?",
        "Right, right. I think I follow. Just give me a second here.",
        "Interesting. I'm not quite sure I understand. What did you mean by that?",
        "Hold on, I'm looking for something. What were you saying?",
        "I'm sorry, my mind wandered for a moment. Could you repeat that?",
        "Hmm, that's a good question. Let me think about it.",
        "I see, I see. And what was the other thing you mentioned?",
        "Oh my. That sounds complicated. Can you explain it again?",
        "Right. I think I need to check on something. Go on.",
        "Mm-hmm. I'm listening. Please continue.",
    ],
    reengagement_prompts=["Hello? Are you still there?"],
    silence_closings=["I'm sorry, I can't hear anyone. Goodbye."],
    max_turns_closings=["Well, it was nice talking to you. Take care now. Goodbye."],
    hangup_closings=["Goodbye."],
    error_closings=["I'm sorry, I have to go now. Goodbye."],
)


class InMemoryPhraseProvider(PhraseProvider):
    """In-memory phrase provider using YAML configuration."""

    def __init__(self, phrase_file: Optional[str] = None):
        """Initialize with optional phrase file path."""
        if phrase_file is None:
            phrase_file = Path(__file__).parent / "data" / "phrases.yaml"
        self.phrase_file = Path(phrase_file)
        self._bank: Optional[PhraseBank] = None

    async def _load_bank(self) -> PhraseBank:
        """Load the phrase bank from the YAML file."""
        if self._bank is None:
            if not self.phrase_file.exists():
                logger.warning(
                    f"[PHRASES] Phrase file {self.phrase_file} not found, using built-in bank"
                )
                self._bank = DEFAULT_PHRASE_BANK
            else:
                with open(self.phrase_file, "r") as f:
                    data = yaml.safe_load(f) or {}
                if not isinstance(data, dict):
                    raise PhraseBankError(
                        f"Phrase file {self.phrase_file} must contain a mapping of pools"
                    )
                # Pools missing from the file fall back to the built-in lines
                merged = DEFAULT_PHRASE_BANK.model_dump()
                merged.update({k: v for k, v in data.items() if k in merged})
                try:
                    self._bank = PhraseBank(**merged)
                except ValidationError as e:
                    raise PhraseBankError(
                        f"Invalid phrase file {self.phrase_file}: {e}"
                    ) from e
                logger.info(
                    f"[PHRASES] Loaded phrase bank from {self.phrase_file} - "
                    f"{len(self._bank.stall_phrases)} stall phrases"
                )
        return self._bank

    async def get_phrase_bank(self) -> PhraseBank:
        """Get the phrase bank."""
        return await self._load_bank()
