"""FastAPI dependencies."""
from fastapi import Request

from app.services.agent.engine import ConversationEngine
from app.services.call_session.store import CallSessionStore
from app.services.speech.twiml import TwimlRenderer
from app.services.stats.aggregator import StatsAggregator


def get_session_store(request: Request) -> CallSessionStore:
    """Get the session store owned by the running application."""
    return request.app.state.session_store


def get_conversation_engine(request: Request) -> ConversationEngine:
    """Get the conversation engine owned by the running application."""
    return request.app.state.conversation_engine


def get_stats_aggregator(request: Request) -> StatsAggregator:
    """Get the stats aggregator owned by the running application."""
    return request.app.state.stats_aggregator


def get_twiml_renderer(request: Request) -> TwimlRenderer:
    """Get the TwiML renderer owned by the running application."""
    return request.app.state.twiml_renderer
