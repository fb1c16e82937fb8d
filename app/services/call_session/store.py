"""In-memory call session store."""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from app.core.exceptions import SessionNotFoundError
from app.services.call_session.models import UNKNOWN_CALLER, CallOutcome, CallSession

logger = logging.getLogger(__name__)

Mutator = Callable[[CallSession], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallSessionStore:
    """Keyed state for every live and recently finished call.

    Writes to one session are serialized by a per-session lock; different
    sessions never contend beyond a short registry lookup. Each update runs
    on a private copy that replaces the stored version only when the mutator
    succeeds, so readers always see a fully applied transition.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._sessions: Dict[str, CallSession] = {}
        self._locks: Dict[str, threading.Lock] = {}
        # Guards the two dicts above; never held while a mutator runs
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get_or_create(self, session_id: str, caller_id: Optional[str] = None) -> CallSession:
        """Get the session for ``session_id``, creating it on first contact."""
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = CallSession(
                    session_id=session_id,
                    caller_id=(caller_id or "").strip() or UNKNOWN_CALLER,
                    start_time=self._clock(),
                )
                self._sessions[session_id] = session
                self._locks[session_id] = threading.Lock()
                logger.info(
                    f"[SESSION STORE] Created session - CallSid: {session_id}, "
                    f"Caller: {session.caller_id}"
                )
        return session.model_copy(deep=True)

    def get(self, session_id: str) -> CallSession:
        """Get a copy of the session, raising SessionNotFoundError if unknown."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session.model_copy(deep=True)

    def update(self, session_id: str, mutator: Mutator) -> CallSession:
        """Apply ``mutator`` to the session as a single atomic transition.

        Returns a copy of the committed session. If the mutator raises, the
        stored session is left untouched and the exception propagates.
        """
        lock = self._locks.get(session_id)
        if lock is None:
            raise SessionNotFoundError(session_id)

        with lock:
            current = self._sessions.get(session_id)
            if current is None:
                # Evicted between the lock lookup and acquiring it
                raise SessionNotFoundError(session_id)
            draft = current.model_copy(deep=True)
            mutator(draft)
            if draft.session_id != current.session_id:
                raise ValueError("session_id is immutable")
            if current.is_terminal and draft != current:
                raise ValueError(f"Session {session_id} is terminal and cannot change")
            if draft.turn_count < current.turn_count:
                raise ValueError("turn_count cannot decrease")
            with self._registry_lock:
                if session_id not in self._sessions:
                    raise SessionNotFoundError(session_id)
                self._sessions[session_id] = draft
        return draft.model_copy(deep=True)

    def list_all(self) -> List[CallSession]:
        """Point-in-time snapshot of every committed session."""
        with self._registry_lock:
            sessions = list(self._sessions.values())
        return [s.model_copy(deep=True) for s in sessions]

    def active_count(self) -> int:
        with self._registry_lock:
            return sum(1 for s in self._sessions.values() if not s.is_terminal)

    def restore(self, sessions: Iterable[CallSession]) -> int:
        """Load previously archived sessions; live sessions take precedence."""
        restored = 0
        with self._registry_lock:
            for session in sessions:
                if session.session_id in self._sessions:
                    continue
                self._sessions[session.session_id] = session.model_copy(deep=True)
                self._locks[session.session_id] = threading.Lock()
                restored += 1
        logger.info(f"[SESSION STORE] Restored {restored} archived sessions")
        return restored

    def evict_completed(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """Drop terminal sessions that ended before ``now - older_than``."""
        cutoff = (now or self._clock()) - older_than
        with self._registry_lock:
            expired = [
                sid
                for sid, s in self._sessions.items()
                if s.outcome != CallOutcome.IN_PROGRESS
                and s.end_time is not None
                and s.end_time < cutoff
            ]
            for sid in expired:
                del self._sessions[sid]
                del self._locks[sid]
        if expired:
            logger.info(f"[SESSION STORE] Evicted {len(expired)} finished sessions")
        return len(expired)
