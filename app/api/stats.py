"""Dashboard stats API endpoint."""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from app.core.dependencies import get_stats_aggregator
from app.services.stats.aggregator import StatsAggregator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/api/stats")
async def get_stats(
    request: Request,
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
):
    """Get the current call stats snapshot (camelCase JSON, polled by the dashboard)."""
    logger.debug(
        f"[STATS] Request received - Client: {request.client.host if request.client else 'unknown'}"
    )

    try:
        snapshot = aggregator.snapshot()
    except Exception as e:
        logger.error(
            f"[STATS] Error computing stats - Error: {type(e).__name__}: {str(e)}",
            exc_info=True
        )
        raise HTTPException(status_code=500, detail=f"Error computing stats: {str(e)}")

    return JSONResponse(content=snapshot.model_dump(mode="json", by_alias=True))
