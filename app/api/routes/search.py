"""API endpoints for investor search and accumulation."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.models.investor import Investor, SearchResult
from app.models.progress import ScrapeProgress
from app.services.investors.accumulation import AccumulationJob
from app.services.investors.cache import SharedCache
from app.services.investors.progress import ProgressTracker
from app.services.investors.providers import (
    get_accumulation_job,
    get_progress_tracker,
    get_query_orchestrator,
    get_shared_cache,
)
from app.services.investors.search import QueryOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


class AccumulateRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Free-text description of the startup or sector.")


class AccumulateResponse(BaseModel):
    investors: list[Investor]
    query: str
    total: int
    added: int
    updated: int


@router.get("/search", response_model=SearchResult)
async def search_investors(
    q: str = Query("", description="Free-text search query."),
    orchestrator: QueryOrchestrator = Depends(get_query_orchestrator),
) -> SearchResult:
    """Search investors, growing the canonical set when nothing cached matches."""
    return await orchestrator.search(q)


@router.post("/accumulate", response_model=AccumulateResponse)
async def accumulate_investors(
    payload: AccumulateRequest,
    job: AccumulationJob = Depends(get_accumulation_job),
) -> AccumulateResponse:
    """Manually trigger an accumulation run for a query."""
    outcome = await job.run(payload.query)
    return AccumulateResponse(
        investors=outcome.investors,
        query=payload.query,
        total=len(outcome.investors),
        added=outcome.added,
        updated=outcome.updated,
    )


@router.get("/progress", response_model=ScrapeProgress, response_model_exclude_none=True)
async def get_progress(
    tracker: ProgressTracker = Depends(get_progress_tracker),
) -> ScrapeProgress:
    """Latest progress snapshot of the running accumulation, or idle."""
    progress = await tracker.get_progress()
    return progress or ScrapeProgress(stage="idle", message="No active search")


@router.post("/clear-lock")
async def clear_lock(cache: SharedCache = Depends(get_shared_cache)) -> dict[str, str]:
    """Force-release the shared accumulation lock."""
    await cache.clear_lock()
    logger.warning("accumulation.lock_cleared_manually")
    return {"message": "Lock cleared successfully"}
