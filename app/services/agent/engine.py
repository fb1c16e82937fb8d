"""Conversation engine: the per-call stalling state machine."""
import logging
import random
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional

from app.core.exceptions import InvalidCallbackError, SessionNotFoundError
from app.services.agent.models import CallbackInput, EngineDecision, parse_callback
from app.services.agent.stages import ConversationStage, stage_for
from app.services.call_session.models import CallOutcome, CallSession
from app.services.call_session.store import CallSessionStore
from app.services.phrases.base import PhraseBank

logger = logging.getLogger(__name__)

# Twilio call statuses that mean the call is over
TERMINAL_CALL_STATUSES = {"completed", "canceled", "failed", "busy", "no-answer"}

Transition = Callable[[CallSession], EngineDecision]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationEngine:
    """Decides, per callback, what to say next and when the call ends.

    The engine is synchronous and does no I/O: every decision is a function
    of the stored session and one callback. All faults are turned into an
    ``error`` outcome with a spoken goodbye, never an exception.
    """

    def __init__(
        self,
        store: CallSessionStore,
        phrase_bank: PhraseBank,
        max_turns: int = 40,
        silence_cycle_limit: int = 2,
        min_speech_confidence: float = 0.0,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if silence_cycle_limit < 1:
            raise ValueError("silence_cycle_limit must be at least 1")
        self.store = store
        self.phrase_bank = phrase_bank
        self.max_turns = max_turns
        self.silence_cycle_limit = silence_cycle_limit
        self.min_speech_confidence = min_speech_confidence
        self.rng = rng or random.Random()
        self._clock = clock

    def handle_payload(self, payload: Mapping[str, Any]) -> EngineDecision:
        """Handle a raw callback mapping (camelCase or snake_case keys)."""
        try:
            callback = parse_callback(payload)
        except InvalidCallbackError as e:
            logger.warning(f"[ENGINE] Rejected callback without session id: {e}")
            return EngineDecision(
                prompt_text=self.phrase_bank.error_closings[0],
                continue_call=False,
                outcome=CallOutcome.ERROR,
                stage=ConversationStage.TERMINATED,
            )
        return self.handle_callback(callback)

    def handle_callback(self, callback: CallbackInput) -> EngineDecision:
        """Handle one speech (or no-speech) callback for a call."""
        try:
            decision = self._apply(
                callback.session_id,
                callback.caller_id,
                lambda session: self._transition(session, callback),
            )
        except Exception as e:
            logger.error(
                f"[ENGINE] Fault while handling callback - CallSid: {callback.session_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return self._fail(callback.session_id, callback.caller_id)

        logger.info(
            f"[ENGINE] Decision - CallSid: {callback.session_id}, Stage: {decision.stage.value}, "
            f"Outcome: {decision.outcome.value}, Continue: {decision.continue_call}"
        )
        return decision

    def handle_call_ended(
        self,
        session_id: str,
        caller_id: Optional[str] = None,
        call_status: str = "completed",
    ) -> EngineDecision:
        """Handle the transport reporting that the call is over.

        A call still in progress was ended by the remote party, so it is
        classified ``caller_hangup`` (``error`` if the transport reports a
        failed call). Calls that already ended keep their outcome.
        """
        outcome = CallOutcome.ERROR if call_status == "failed" else CallOutcome.CALLER_HANGUP

        def hang_up(session: CallSession) -> EngineDecision:
            if session.is_terminal:
                return self._replay(session)
            return self._terminate(session, outcome)

        try:
            decision = self._apply(session_id, caller_id, hang_up)
        except Exception as e:
            logger.error(
                f"[ENGINE] Fault while ending call - CallSid: {session_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return self._fail(session_id, caller_id)

        logger.info(
            f"[ENGINE] Call ended by transport - CallSid: {session_id}, "
            f"Status: {call_status}, Outcome: {decision.outcome.value}"
        )
        return decision

    def select_stall_index(self, session: CallSession) -> int:
        """Pick a stall phrase index, avoiding phrases already used in this call.

        Once every phrase has been used the pool resets, excluding only the
        phrase spoken last.
        """
        pool_size = len(self.phrase_bank.stall_phrases)
        candidates = [i for i in range(pool_size) if i not in session.used_phrase_indices]
        if not candidates:
            session.used_phrase_indices.clear()
            candidates = [i for i in range(pool_size) if i != session.last_phrase_index]
            if not candidates:
                candidates = list(range(pool_size))

        index = self.rng.choice(candidates)
        session.used_phrase_indices.add(index)
        session.last_phrase_index = index
        return index

    def _apply(
        self, session_id: str, caller_id: Optional[str], transition: Transition
    ) -> EngineDecision:
        """Run ``transition`` as one store update, re-creating a vanished session once."""
        decisions: List[EngineDecision] = []

        def mutate(session: CallSession) -> None:
            decisions.append(transition(session))

        self.store.get_or_create(session_id, caller_id)
        try:
            self.store.update(session_id, mutate)
        except SessionNotFoundError:
            logger.warning(
                f"[ENGINE] Session vanished before update, starting fresh - CallSid: {session_id}"
            )
            decisions.clear()
            self.store.get_or_create(session_id, caller_id)
            self.store.update(session_id, mutate)
        return decisions[-1]

    def _transition(self, session: CallSession, callback: CallbackInput) -> EngineDecision:
        if session.is_terminal:
            logger.info(
                f"[ENGINE] Callback for finished call, replaying goodbye - CallSid: {session.session_id}"
            )
            return self._replay(session)
        if callback.has_speech(self.min_speech_confidence):
            return self._on_speech(session)
        return self._on_silence(session, callback)

    def _on_speech(self, session: CallSession) -> EngineDecision:
        session.consecutive_silence_count = 0
        session.turn_count += 1
        if session.turn_count >= self.max_turns:
            return self._terminate(session, CallOutcome.MAX_TURNS)

        index = self.select_stall_index(session)
        return EngineDecision(
            prompt_text=self.phrase_bank.stall_phrases[index],
            continue_call=True,
            outcome=CallOutcome.IN_PROGRESS,
            stage=stage_for(session),
        )

    def _on_silence(self, session: CallSession, callback: CallbackInput) -> EngineDecision:
        session.consecutive_silence_count += 1
        if session.consecutive_silence_count >= self.silence_cycle_limit:
            return self._terminate(session, CallOutcome.SILENCE_TIMEOUT)

        # The opening line doubles as the re-engagement prompt on a silent first contact
        if callback.is_initial_contact and session.turn_count == 0:
            pool = self.phrase_bank.greetings
        else:
            pool = self.phrase_bank.reengagement_prompts
        return EngineDecision(
            prompt_text=self.rng.choice(pool),
            continue_call=True,
            outcome=CallOutcome.IN_PROGRESS,
            stage=stage_for(session),
        )

    def _terminate(self, session: CallSession, outcome: CallOutcome) -> EngineDecision:
        closing = self.rng.choice(self.phrase_bank.closings_for(outcome))
        session.terminate(outcome, self._clock(), closing)
        logger.info(
            f"[ENGINE] Call terminated - CallSid: {session.session_id}, Outcome: {outcome.value}, "
            f"Turns: {session.turn_count}"
        )
        return EngineDecision(
            prompt_text=closing,
            continue_call=False,
            outcome=outcome,
            stage=ConversationStage.CLOSING,
        )

    def _replay(self, session: CallSession) -> EngineDecision:
        closing = session.closing_prompt or self.phrase_bank.closings_for(session.outcome)[0]
        return EngineDecision(
            prompt_text=closing,
            continue_call=False,
            outcome=session.outcome,
            stage=ConversationStage.TERMINATED,
        )

    def _fail(self, session_id: str, caller_id: Optional[str]) -> EngineDecision:
        """Force the session to ``error`` and produce a goodbye that always renders."""
        closing = self.phrase_bank.error_closings[0]
        outcome = CallOutcome.ERROR
        try:
            self.store.get_or_create(session_id, caller_id)
            committed = self.store.update(
                session_id,
                lambda session: session.terminate(CallOutcome.ERROR, self._clock(), closing),
            )
            outcome = committed.outcome
            closing = committed.closing_prompt or closing
        except Exception as e:
            logger.critical(
                f"[ENGINE] Could not record error outcome - CallSid: {session_id}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
        return EngineDecision(
            prompt_text=closing,
            continue_call=False,
            outcome=outcome,
            stage=ConversationStage.CLOSING,
        )
