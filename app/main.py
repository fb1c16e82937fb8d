"""Main FastAPI application."""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI

from app.api import health, stats, webhooks
from app.core.config import settings
from app.core.logging import setup_logging
from app.db.database import AsyncSessionLocal, init_db
from app.services.agent.engine import ConversationEngine
from app.services.call_session.store import CallSessionStore
from app.services.persistence.calls import CallArchiveService
from app.services.phrases.base import PhraseBank
from app.services.phrases.generative import StallPhraseGenerator
from app.services.phrases.in_memory_phrases import InMemoryPhraseProvider
from app.services.speech.twiml import TwimlRenderer
from app.services.stats.aggregator import StatsAggregator

logger = logging.getLogger(__name__)


def configure_services(
    app: FastAPI,
    phrase_bank: PhraseBank,
    store: Optional[CallSessionStore] = None,
) -> CallSessionStore:
    """Create the session store and the components that share it."""
    store = store or CallSessionStore()
    app.state.session_store = store
    app.state.conversation_engine = ConversationEngine(
        store,
        phrase_bank,
        max_turns=settings.max_turns,
        silence_cycle_limit=settings.silence_cycle_limit,
        min_speech_confidence=settings.min_speech_confidence,
    )
    app.state.stats_aggregator = StatsAggregator(
        store,
        reporting_timezone=settings.reporting_timezone,
        recent_calls_limit=settings.recent_calls_limit,
    )
    app.state.twiml_renderer = TwimlRenderer(
        voice=settings.tts_voice,
        gather_timeout_seconds=settings.gather_timeout_seconds,
        max_speech_time_seconds=settings.max_speech_time_seconds,
    )
    return store


async def load_phrase_bank() -> PhraseBank:
    """Load the phrase bank, optionally extended with generated stall phrases."""
    phrase_bank = await InMemoryPhraseProvider(settings.phrase_bank_file).get_phrase_bank()
    if settings.generate_stall_phrases:
        if settings.openai_api_key:
            phrase_bank = await StallPhraseGenerator().extend(
                phrase_bank, settings.generated_phrase_count
            )
        else:
            logger.warning("[STARTUP] GENERATE_STALL_PHRASES is set but OPENAI_API_KEY is missing")
    return phrase_bank


async def restore_archived_sessions(store: CallSessionStore) -> None:
    """Rehydrate finished calls from the archive so stats survive restarts."""
    try:
        async with AsyncSessionLocal() as db:
            archived = await CallArchiveService(db).load_sessions()
        store.restore(s for s in archived if s.is_terminal)
    except Exception as e:
        logger.error(
            f"[STARTUP] Could not restore archived calls - {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        # Don't raise - a fresh store still serves calls


async def evict_finished_sessions(store: CallSessionStore, retention: timedelta, interval: int) -> None:
    """Periodically drop finished sessions older than the retention window."""
    while True:
        await asyncio.sleep(interval)
        store.evict_completed(retention)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    store = configure_services(app, await load_phrase_bank())
    await restore_archived_sessions(store)

    eviction_task = None
    if settings.session_retention_hours:
        eviction_task = asyncio.create_task(
            evict_finished_sessions(
                store,
                timedelta(hours=settings.session_retention_hours),
                settings.eviction_interval_seconds,
            )
        )
    yield
    # Shutdown
    if eviction_task is not None:
        eviction_task.cancel()


app = FastAPI(
    title="PleaseHold",
    description="Answers unwanted calls and keeps the caller talking",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(webhooks.voice.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(stats.router, tags=["stats"])


@app.get("/")
async def root():
    """Service banner."""
    return {
        "message": "PleaseHold API",
        "version": "0.1.0",
    }


def run():
    """Serve the app with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
