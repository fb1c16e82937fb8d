"""Unit tests for the Twilio webhook and stats endpoints."""
import pytest
from twilio.request_validator import RequestValidator

from app.services.call_session.models import CallOutcome
from app.services.persistence.calls import CallArchiveService


class TestVoiceWebhooks:
    """Test webhook adapter behaviour (test engine uses max_turns=3)."""

    @pytest.mark.asyncio
    async def test_incoming_call_greets_and_gathers(self, client, store):
        """Test first contact answers with a greeting inside a speech gather."""
        response = await client.post(
            "/webhooks/voice/incoming",
            data={"CallSid": "CA1", "From": "+15551234567"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<Gather" in response.text
        assert "Hello? Sorry, who is this?" in response.text
        assert "http://test/webhooks/voice/gather" in response.text

        session = store.get("CA1")
        assert session.caller_id == "+15551234567"
        assert session.turn_count == 0

    @pytest.mark.asyncio
    async def test_gather_with_speech_stalls(self, client, store):
        """Test recognized speech gets a stall phrase and counts a turn."""
        await client.post("/webhooks/voice/incoming", data={"CallSid": "CA2", "From": "+1555"})
        response = await client.post(
            "/webhooks/voice/gather",
            data={"CallSid": "CA2", "From": "+1555", "SpeechResult": "Hi, this is the IRS", "Confidence": "0.91"},
        )

        assert response.status_code == 200
        assert "<Say voice=\"Polly.Matthew\">stall " in response.text
        assert store.get("CA2").turn_count == 1

    @pytest.mark.asyncio
    async def test_two_silent_cycles_hang_up(self, client, store, test_db):
        """Test silent first contact then silent gather ends with silence_timeout."""
        await client.post("/webhooks/voice/incoming", data={"CallSid": "CA3"})
        response = await client.post("/webhooks/voice/gather", data={"CallSid": "CA3"})

        assert "<Hangup/>" in response.text
        assert store.get("CA3").outcome == CallOutcome.SILENCE_TIMEOUT
        assert store.get("CA3").caller_id == "unknown"

        archived = await CallArchiveService(test_db).get_call_by_sid("CA3")
        assert archived is not None
        assert archived.outcome == "silence_timeout"

    @pytest.mark.asyncio
    async def test_max_turns_hang_up(self, client, store):
        """Test the third speech turn ends the call."""
        for _ in range(2):
            response = await client.post(
                "/webhooks/voice/gather", data={"CallSid": "CA4", "SpeechResult": "hello"}
            )
            assert "<Gather" in response.text

        response = await client.post(
            "/webhooks/voice/gather", data={"CallSid": "CA4", "SpeechResult": "hello"}
        )

        assert "<Hangup/>" in response.text
        assert store.get("CA4").outcome == CallOutcome.MAX_TURNS

    @pytest.mark.asyncio
    async def test_malformed_confidence_is_tolerated(self, client, store):
        """Test a garbage Confidence value does not break the callback."""
        response = await client.post(
            "/webhooks/voice/gather",
            data={"CallSid": "CA5", "SpeechResult": "hello", "Confidence": "abc"},
        )

        assert response.status_code == 200
        assert store.get("CA5").turn_count == 1

    @pytest.mark.asyncio
    async def test_status_completed_records_caller_hangup(self, client, store, test_db):
        """Test the status callback classifies a live call as caller_hangup."""
        await client.post("/webhooks/voice/gather", data={"CallSid": "CA6", "SpeechResult": "hi"})

        response = await client.post(
            "/webhooks/voice/status", data={"CallSid": "CA6", "CallStatus": "completed"}
        )

        assert response.status_code == 200
        assert response.text == "OK"
        assert store.get("CA6").outcome == CallOutcome.CALLER_HANGUP
        archived = await CallArchiveService(test_db).get_call_by_sid("CA6")
        assert archived.outcome == "caller_hangup"

    @pytest.mark.asyncio
    async def test_status_non_terminal_is_ignored(self, client, store):
        """Test ringing/in-progress statuses do not end the call."""
        await client.post("/webhooks/voice/incoming", data={"CallSid": "CA7"})
        await client.post("/webhooks/voice/status", data={"CallSid": "CA7", "CallStatus": "in-progress"})

        assert store.get("CA7").outcome == CallOutcome.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_callback_after_hangup_replays_goodbye(self, client, store):
        """Test redelivered callbacks for a finished call replay the goodbye."""
        await client.post("/webhooks/voice/status", data={"CallSid": "CA8", "CallStatus": "completed"})

        response = await client.post(
            "/webhooks/voice/gather", data={"CallSid": "CA8", "SpeechResult": "hello?"}
        )

        assert "<Hangup/>" in response.text
        assert store.get("CA8").turn_count == 0

    @pytest.mark.asyncio
    async def test_engine_crash_still_returns_twiml(self, client, monkeypatch):
        """Test an unexpected adapter failure falls back to a goodbye document."""
        from app.main import app

        def explode(payload):
            raise RuntimeError("boom")

        monkeypatch.setattr(app.state.conversation_engine, "handle_payload", explode)
        response = await client.post(
            "/webhooks/voice/gather", data={"CallSid": "CA9", "SpeechResult": "hi"}
        )

        assert response.status_code == 200
        assert "<Hangup/>" in response.text


class TestTwilioSignature:
    """Test optional webhook signature validation."""

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, client, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "validate_twilio_signature", True)
        monkeypatch.setattr(settings, "twilio_auth_token", "secret")

        response = await client.post("/webhooks/voice/incoming", data={"CallSid": "CA10"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_valid_signature_accepted(self, client, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "validate_twilio_signature", True)
        monkeypatch.setattr(settings, "twilio_auth_token", "secret")
        params = {"CallSid": "CA11", "From": "+15550000000"}
        signature = RequestValidator("secret").compute_signature(
            "http://test/webhooks/voice/incoming", params
        )

        response = await client.post(
            "/webhooks/voice/incoming", data=params, headers={"X-Twilio-Signature": signature}
        )

        assert response.status_code == 200
        assert "<Gather" in response.text


class TestStatsAndHealth:
    """Test read-only endpoints."""

    @pytest.mark.asyncio
    async def test_stats_endpoint(self, client):
        """Test /api/stats reflects finished and active calls in camelCase."""
        await client.post("/webhooks/voice/incoming", data={"CallSid": "CA20"})
        await client.post("/webhooks/voice/gather", data={"CallSid": "CA20"})
        await client.post("/webhooks/voice/incoming", data={"CallSid": "CA21"})

        response = await client.get("/api/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["totalCalls"] == 1
        assert data["activeCalls"] == 1
        assert data["outcomes"] == {"silence_timeout": 1}
        assert data["avgDurationMs"] == 0
        assert {c["callId"] for c in data["recentCalls"]} == {"CA20", "CA21"}

    @pytest.mark.asyncio
    async def test_health(self, client):
        await client.post("/webhooks/voice/incoming", data={"CallSid": "CA30"})

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "sessions": 1, "activeCalls": 1}
