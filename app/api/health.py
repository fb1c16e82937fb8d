"""Health check endpoint."""
import logging
from fastapi import APIRouter, Depends, Request

from app.core.dependencies import get_session_store
from app.services.call_session.store import CallSessionStore

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(
    request: Request,
    store: CallSessionStore = Depends(get_session_store),
):
    """Health check endpoint."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {
        "status": "healthy",
        "sessions": len(store),
        "activeCalls": store.active_count(),
    }
