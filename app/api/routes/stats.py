"""Statistics routes, including the live server-sent events feed."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session, sessionmaker

from app.api.dependencies import require_context
from app.core.config import settings
from app.core.database import get_db, get_session_factory
from app.schemas.stats import StatsSnapshot, UserStatsResponse
from app.services import billing as billing_service
from app.services.auth import RequestContext
from app.services.statistics import (
    StatisticsAggregator,
    compute_billing_summary,
    compute_consumption_summary,
    database_sources,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stats"])


def get_stats_aggregator(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> StatisticsAggregator:
    """A fresh aggregator per subscriber; fallbacks are per stream."""
    return StatisticsAggregator(database_sources(session_factory))


def format_event(snapshot: StatsSnapshot, event: str = "stats") -> str:
    """Encode a snapshot as one server-sent event."""
    return f"event: {event}\ndata: {snapshot.model_dump_json(by_alias=True)}\n\n"


async def stats_event_stream(
    aggregator: StatisticsAggregator,
    is_disconnected: Callable[[], Awaitable[bool]],
    interval: float,
) -> AsyncIterator[str]:
    """Emit a statistics snapshot every ``interval`` seconds until the client leaves."""
    ticks = 0
    try:
        while True:
            snapshot = await aggregator.snapshot()
            if await is_disconnected():
                break
            yield format_event(snapshot)
            ticks += 1
            await asyncio.sleep(interval)
    finally:
        logger.info("Statistics feed closed after %d event(s)", ticks)


@router.get("/stats", response_model=StatsSnapshot, response_model_by_alias=True)
async def get_stats(
    aggregator: StatisticsAggregator = Depends(get_stats_aggregator),
) -> StatsSnapshot:
    """Current global statistics."""
    return await aggregator.snapshot()


@router.get("/events/stats")
async def stream_stats(
    request: Request,
    aggregator: StatisticsAggregator = Depends(get_stats_aggregator),
) -> StreamingResponse:
    """Live statistics feed as server-sent events."""
    logger.info("Statistics feed opened for %s", request.client.host if request.client else "?")
    return StreamingResponse(
        stats_event_stream(aggregator, request.is_disconnected, settings.STATS_INTERVAL_SECONDS),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/stats/me", response_model=UserStatsResponse)
def get_my_stats(
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> UserStatsResponse:
    """Consumption and payment summary of the current user's billing history."""
    periods = billing_service.list_billing_periods(db, ctx)
    return UserStatsResponse(
        consumption=compute_consumption_summary(periods),
        billing=compute_billing_summary(periods),
    )
