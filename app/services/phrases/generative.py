"""LLM-backed stall phrase generation."""
import json
import logging
from typing import List, Optional

from openai import AsyncOpenAI

from app.core.config import settings
from app.services.phrases.base import PhraseBank

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You write lines for a friendly but hopelessly distracted person answering the phone.
Each line must stall the conversation without revealing any personal information,
agreeing to anything, or asking for money or account details.
Lines are spoken aloud, so use plain text only: no markup, emojis, or stage directions.
Respond with a JSON object of the form {"phrases": ["...", "..."]}."""

MAX_PHRASE_LENGTH = 200


class StallPhraseGenerator:
    """Generates extra stall phrases with the OpenAI chat API.

    Runs once at startup; the conversation engine only ever sees the
    resulting static pool.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.openai_model

    async def generate(self, count: int) -> List[str]:
        """Ask the model for ``count`` stall phrases.

        Returns an empty list if the request fails or the answer is unusable.
        """
        user_prompt = (
            f"Write {count} different short stalling lines (one or two sentences each)."
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.9,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"[PHRASE GENERATOR] Model returned invalid JSON: {e}")
            return []
        except Exception as e:
            logger.warning(
                f"[PHRASE GENERATOR] Phrase generation failed - {type(e).__name__}: {str(e)}"
            )
            return []

        phrases = payload.get("phrases") if isinstance(payload, dict) else None
        if not isinstance(phrases, list):
            logger.warning("[PHRASE GENERATOR] Response missing 'phrases' list")
            return []

        cleaned = [
            p.strip()
            for p in phrases
            if isinstance(p, str) and p.strip() and len(p.strip()) <= MAX_PHRASE_LENGTH
            and "<" not in p and ">" not in p
        ]
        logger.info(f"[PHRASE GENERATOR] Generated {len(cleaned)} usable stall phrases")
        return cleaned[:count]

    async def extend(self, bank: PhraseBank, count: int) -> PhraseBank:
        """Return ``bank`` with generated stall phrases appended."""
        phrases = await self.generate(count)
        if not phrases:
            return bank
        return bank.with_extra_stalls(phrases)
