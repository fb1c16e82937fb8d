"""Call archive persistence service."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Call
from app.services.call_session.models import CallOutcome, CallSession

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class CallArchiveService:
    """Service for archiving call session metrics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_call_by_sid(self, call_sid: str) -> Optional[Call]:
        """Get call by Twilio call SID."""
        result = await self.db.execute(
            select(Call).where(Call.call_sid == call_sid)
        )
        return result.scalar_one_or_none()

    async def archive_session(self, session: CallSession) -> Call:
        """Create or update the archive record for a session."""
        call = await self.get_call_by_sid(session.session_id)
        if call is None:
            call = Call(call_sid=session.session_id)
            self.db.add(call)

        call.caller_id = session.caller_id
        call.started_at = session.start_time
        call.ended_at = session.end_time
        call.turn_count = session.turn_count
        call.outcome = session.outcome.value

        await self.db.commit()
        await self.db.refresh(call)
        logger.debug(
            f"[CALL ARCHIVE] Archived call - CallSid: {session.session_id}, "
            f"Outcome: {session.outcome.value}"
        )
        return call

    async def load_sessions(self, limit: Optional[int] = None) -> List[CallSession]:
        """Load archived calls back into session objects, newest first."""
        query = select(Call).order_by(desc(Call.started_at))
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)

        sessions = []
        for call in result.scalars().all():
            try:
                outcome = CallOutcome(call.outcome)
            except ValueError:
                logger.warning(
                    f"[CALL ARCHIVE] Skipping call with unknown outcome - CallSid: {call.call_sid}, "
                    f"Outcome: {call.outcome!r}"
                )
                continue
            ended_at = _as_utc(call.ended_at)
            if outcome.is_terminal and ended_at is None:
                # Keep the end_time/outcome invariant for damaged rows
                ended_at = _as_utc(call.started_at)
            if not outcome.is_terminal:
                ended_at = None
            sessions.append(
                CallSession(
                    session_id=call.call_sid,
                    caller_id=call.caller_id,
                    start_time=_as_utc(call.started_at),
                    end_time=ended_at,
                    turn_count=call.turn_count,
                    outcome=outcome,
                )
            )
        return sessions
