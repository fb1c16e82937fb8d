"""Unit tests for the call archive persistence service."""
from datetime import datetime, timedelta, timezone

import pytest

from app.services.call_session.models import CallOutcome, CallSession
from app.services.persistence.calls import CallArchiveService

STARTED = datetime(2026, 3, 14, 15, 0, 0, tzinfo=timezone.utc)


def finished_session(call_sid: str, outcome=CallOutcome.MAX_TURNS, turns=3) -> CallSession:
    return CallSession(
        session_id=call_sid,
        caller_id="+15550001111",
        start_time=STARTED,
        end_time=STARTED + timedelta(seconds=95),
        turn_count=turns,
        outcome=outcome,
        used_phrase_indices={1, 4},
        closing_prompt="Goodbye.",
    )


class TestCallArchive:
    """Test call archive service."""

    @pytest.mark.asyncio
    async def test_archive_session(self, test_db):
        """Test archiving a finished call creates a record."""
        service = CallArchiveService(test_db)

        call = await service.archive_session(finished_session("CA900"))

        assert call.id is not None
        assert call.call_sid == "CA900"
        assert call.caller_id == "+15550001111"
        assert call.turn_count == 3
        assert call.outcome == "max_turns"
        assert call.ended_at is not None

    @pytest.mark.asyncio
    async def test_archive_session_upserts(self, test_db):
        """Test archiving the same call twice updates the single record."""
        service = CallArchiveService(test_db)

        first = await service.archive_session(finished_session("CA901", turns=1))
        second = await service.archive_session(
            finished_session("CA901", outcome=CallOutcome.CALLER_HANGUP, turns=2)
        )

        assert first.id == second.id
        assert second.turn_count == 2
        assert second.outcome == "caller_hangup"

    @pytest.mark.asyncio
    async def test_get_call_by_sid_missing(self, test_db):
        """Test lookup of an unknown call returns None."""
        service = CallArchiveService(test_db)
        assert await service.get_call_by_sid("CA-none") is None

    @pytest.mark.asyncio
    async def test_load_sessions_round_trip(self, test_db):
        """Test archived calls load back as aware-UTC terminal sessions."""
        service = CallArchiveService(test_db)
        await service.archive_session(finished_session("CA902"))

        sessions = await service.load_sessions()

        assert len(sessions) == 1
        session = sessions[0]
        assert session.session_id == "CA902"
        assert session.outcome == CallOutcome.MAX_TURNS
        assert session.start_time == STARTED
        assert session.duration_ms() == 95_000
        assert session.start_time.tzinfo is not None
        # Per-call phrase bookkeeping is not archived
        assert session.used_phrase_indices == set()

    @pytest.mark.asyncio
    async def test_load_sessions_newest_first_with_limit(self, test_db):
        """Test loading honours ordering and limit."""
        service = CallArchiveService(test_db)
        for i in range(3):
            session = finished_session(f"CA91{i}")
            session.start_time = STARTED + timedelta(minutes=i)
            session.end_time = session.start_time + timedelta(seconds=10)
            await service.archive_session(session)

        sessions = await service.load_sessions(limit=2)

        assert [s.session_id for s in sessions] == ["CA912", "CA911"]

    @pytest.mark.asyncio
    async def test_load_sessions_skips_unknown_outcome(self, test_db):
        """Test one unreadable row does not block loading the rest of the archive."""
        service = CallArchiveService(test_db)
        await service.archive_session(finished_session("CA920"))
        bad = await service.archive_session(finished_session("CA921"))
        bad.outcome = "transferred"
        await test_db.commit()

        sessions = await service.load_sessions()

        assert [s.session_id for s in sessions] == ["CA920"]
