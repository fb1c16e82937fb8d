"""Twilio voice webhook endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.request_validator import RequestValidator

from app.core.config import settings
from app.core.dependencies import (
    get_conversation_engine,
    get_session_store,
    get_twiml_renderer,
)
from app.db.database import get_db
from app.services.agent.engine import TERMINAL_CALL_STATUSES, ConversationEngine
from app.services.agent.models import EngineDecision
from app.services.call_session.store import CallSessionStore
from app.services.persistence.calls import CallArchiveService
from app.services.speech.twiml import FALLBACK_GOODBYE, TwimlRenderer

router = APIRouter()
logger = logging.getLogger(__name__)

GATHER_PATH = "/webhooks/voice/gather"


def get_base_url(request: Request) -> str:
    """
    Get the base URL for constructing absolute URLs.

    Uses BASE_URL environment variable if set, otherwise constructs from request.
    """
    if settings.base_url:
        return settings.base_url.rstrip('/')
    return str(request.base_url).rstrip('/')


async def validate_twilio_signature(request: Request) -> None:
    """
    Validate the X-Twilio-Signature header when validation is enabled.

    Raises:
        HTTPException: If the signature is missing or invalid
    """
    if not settings.validate_twilio_signature:
        return

    signature = request.headers.get("X-Twilio-Signature", "")
    if not signature:
        logger.error("[TWILIO AUTH] Missing X-Twilio-Signature header")
        raise HTTPException(status_code=401, detail="Missing signature header")

    validator = RequestValidator(settings.twilio_auth_token or "")
    form_data = await request.form()
    params = {key: value for key, value in form_data.items()}
    if not validator.validate(str(request.url), params, signature):
        logger.error("[TWILIO AUTH] Invalid Twilio signature")
        raise HTTPException(status_code=403, detail="Invalid signature")


def parse_confidence(raw: Optional[str]) -> Optional[float]:
    """Parse Twilio's Confidence field; anything unusable becomes None."""
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"[GATHER] Ignoring malformed Confidence value: {raw!r}")
        return None
    if not 0.0 <= value <= 1.0:
        logger.warning(f"[GATHER] Ignoring out-of-range Confidence value: {raw!r}")
        return None
    return value


async def archive_if_finished(
    decision: EngineDecision,
    call_sid: str,
    store: CallSessionStore,
    db: AsyncSession,
) -> None:
    """Write finished calls to the archive; failures never reach Twilio."""
    if decision.continue_call:
        return
    try:
        session = store.get(call_sid)
        await CallArchiveService(db).archive_session(session)
    except Exception as e:
        logger.error(
            f"[CALL ARCHIVE] Failed to archive call - CallSid: {call_sid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )


def hangup_response(renderer: Optional[TwimlRenderer] = None) -> Response:
    """Static goodbye used when nothing else can be rendered."""
    renderer = renderer or TwimlRenderer()
    return Response(content=renderer.generate_twiml_hangup(FALLBACK_GOODBYE), media_type="application/xml")


async def _handle_speech_callback(
    request: Request,
    tag: str,
    call_sid: str,
    caller: Optional[str],
    speech_result: Optional[str],
    confidence: Optional[str],
    is_initial_contact: bool,
    engine: ConversationEngine,
    store: CallSessionStore,
    renderer: TwimlRenderer,
    db: AsyncSession,
) -> Response:
    try:
        decision = engine.handle_payload(
            {
                "sessionId": call_sid,
                "callerId": caller,
                "recognizedSpeech": speech_result,
                "speechConfidence": parse_confidence(confidence),
                "isInitialContact": is_initial_contact,
            }
        )
        await archive_if_finished(decision, call_sid, store, db)

        action_url = f"{get_base_url(request)}{GATHER_PATH}"
        twiml = renderer.render(decision, action_url)
        logger.info(
            f"[{tag}] Responded - CallSid: {call_sid}, Outcome: {decision.outcome.value}, "
            f"Continue: {decision.continue_call}, TwiML length: {len(twiml)} bytes"
        )
        return Response(content=twiml, media_type="application/xml")

    except Exception as e:
        logger.error(
            f"[{tag}] Error processing callback - CallSid: {call_sid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        # Return a graceful goodbye to Twilio
        return hangup_response(renderer)


@router.post("/voice/incoming", dependencies=[Depends(validate_twilio_signature)])
async def handle_incoming_call(
    request: Request,
    CallSid: str = Form(...),
    From: Optional[str] = Form(None),
    SpeechResult: Optional[str] = Form(None),
    Confidence: Optional[str] = Form(None),
    engine: ConversationEngine = Depends(get_conversation_engine),
    store: CallSessionStore = Depends(get_session_store),
    renderer: TwimlRenderer = Depends(get_twiml_renderer),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle incoming call from Twilio.

    This endpoint is called when a call comes in.
    """
    logger.info(
        f"[INCOMING CALL] Received incoming call webhook - CallSid: {CallSid}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    return await _handle_speech_callback(
        request, "INCOMING CALL", CallSid, From, SpeechResult, Confidence,
        True, engine, store, renderer, db,
    )


@router.post("/voice/gather", dependencies=[Depends(validate_twilio_signature)])
async def handle_gather(
    request: Request,
    CallSid: str = Form(...),
    From: Optional[str] = Form(None),
    SpeechResult: Optional[str] = Form(None),
    Confidence: Optional[str] = Form(None),
    engine: ConversationEngine = Depends(get_conversation_engine),
    store: CallSessionStore = Depends(get_session_store),
    renderer: TwimlRenderer = Depends(get_twiml_renderer),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle gathered speech from Twilio.

    Called after each gather cycle; a missing SpeechResult means silence.
    """
    logger.info(
        f"[GATHER] Received speech input - CallSid: {CallSid}, "
        f"SpeechResult length: {len(SpeechResult) if SpeechResult else 0}"
    )
    if not SpeechResult:
        logger.info(f"[GATHER] No speech detected - CallSid: {CallSid}")

    return await _handle_speech_callback(
        request, "GATHER", CallSid, From, SpeechResult, Confidence,
        False, engine, store, renderer, db,
    )


@router.post("/voice/status", dependencies=[Depends(validate_twilio_signature)])
async def handle_call_status(
    request: Request,
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
    From: Optional[str] = Form(None),
    engine: ConversationEngine = Depends(get_conversation_engine),
    store: CallSessionStore = Depends(get_session_store),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle call status updates from Twilio.

    This endpoint is called when call status changes (completed, failed, etc.).
    """
    logger.info(
        f"[CALL STATUS] Received status update - CallSid: {CallSid}, "
        f"CallStatus: {CallStatus}"
    )

    try:
        if CallStatus in TERMINAL_CALL_STATUSES:
            decision = engine.handle_call_ended(CallSid, From, call_status=CallStatus)
            await archive_if_finished(decision, CallSid, store, db)
            logger.info(
                f"[CALL STATUS] Call closed - CallSid: {CallSid}, "
                f"Outcome: {decision.outcome.value}"
            )
        else:
            logger.debug(
                f"[CALL STATUS] Status update received but no action needed - "
                f"CallSid: {CallSid}, CallStatus: {CallStatus}"
            )

        return Response(content="OK", media_type="text/plain")

    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling call status update - CallSid: {CallSid}, "
            f"CallStatus: {CallStatus}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True
        )
        # Still return OK to Twilio to avoid retries
        return Response(content="OK", media_type="text/plain")
