"""TwiML rendering for engine decisions."""
from app.services.agent.models import EngineDecision

FALLBACK_GOODBYE = "I'm sorry, I have to go now. Goodbye."


def escape_xml(text: str) -> str:
    """Escape XML special characters."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


class TwimlRenderer:
    """Renders spoken prompts as Twilio voice-response documents."""

    def __init__(
        self,
        voice: str = "Polly.Matthew",
        gather_timeout_seconds: int = 3,
        max_speech_time_seconds: int = 10,
    ):
        self.voice = voice
        self.gather_timeout_seconds = gather_timeout_seconds
        self.max_speech_time_seconds = max_speech_time_seconds

    def render(self, decision: EngineDecision, action_url: str) -> str:
        """Render an engine decision: keep gathering, or say goodbye and hang up."""
        if decision.continue_call:
            return self.generate_twiml_with_gather(decision.prompt_text, action_url)
        return self.generate_twiml_hangup(decision.prompt_text)

    def generate_twiml_with_gather(self, text: str, action_url: str) -> str:
        """
        Generate TwiML that speaks text, then gathers speech.

        When the gather times out without speech, Twilio follows the Redirect
        and posts to the same action URL with no SpeechResult, which the
        engine counts as a silence cycle.

        Args:
            text: Text to speak before gathering
            action_url: URL to send gathered input to

        Returns:
            TwiML XML string
        """
        escaped_text = escape_xml(text)
        escaped_url = escape_xml(action_url)

        return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Gather input="speech" timeout="{self.gather_timeout_seconds}" speechTimeout="auto" maxSpeechTime="{self.max_speech_time_seconds}" action="{escaped_url}" method="POST">
        <Say voice="{self.voice}">{escaped_text}</Say>
    </Gather>
    <Redirect method="POST">{escaped_url}</Redirect>
</Response>"""

    def generate_twiml_hangup(self, text: str) -> str:
        """
        Generate TwiML that speaks text and ends the call.

        Args:
            text: Closing line to speak

        Returns:
            TwiML XML string
        """
        escaped_text = escape_xml(text or FALLBACK_GOODBYE)

        return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Say voice="{self.voice}">{escaped_text}</Say>
    <Hangup/>
</Response>"""
