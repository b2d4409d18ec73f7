"""Process-wide service instances used by the API routes."""

from __future__ import annotations

import logging

from app.core.redis import get_redis
from app.services.investors.accumulation import AccumulationJob
from app.services.investors.background import BackgroundTasks
from app.services.investors.cache import SharedCache, build_shared_cache
from app.services.investors.enrichment import ProfileEnricher
from app.services.investors.generative_source import OpenAIInvestorSource
from app.services.investors.progress import ProgressTracker
from app.services.investors.repositories import (
    InvestorStore,
    SqlInvestorRepository,
    build_investor_store,
)
from app.services.investors.search import QueryOrchestrator

logger = logging.getLogger(__name__)

_STORE: InvestorStore | None = None
_CACHE: SharedCache | None = None
_PROGRESS: ProgressTracker | None = None
_JOB: AccumulationJob | None = None
_ORCHESTRATOR: QueryOrchestrator | None = None
_ENRICHER: ProfileEnricher | None = None

# Cache writes scheduled by route handlers outside any service instance.
api_background = BackgroundTasks("investors_api")


def get_investor_store() -> InvestorStore:
    """Singleton accessor used by API routes."""
    global _STORE  # noqa: PLW0603
    if _STORE is None:
        _STORE = build_investor_store()
    return _STORE


def get_shared_cache() -> SharedCache:
    global _CACHE  # noqa: PLW0603
    if _CACHE is None:
        _CACHE = build_shared_cache(get_redis())
    return _CACHE


def get_progress_tracker() -> ProgressTracker:
    global _PROGRESS  # noqa: PLW0603
    if _PROGRESS is None:
        _PROGRESS = ProgressTracker(get_shared_cache())
    return _PROGRESS


def get_accumulation_job() -> AccumulationJob:
    global _JOB  # noqa: PLW0603
    if _JOB is None:
        _JOB = AccumulationJob(
            get_investor_store(),
            get_shared_cache(),
            OpenAIInvestorSource(),
            get_progress_tracker(),
        )
    return _JOB


def get_query_orchestrator() -> QueryOrchestrator:
    global _ORCHESTRATOR  # noqa: PLW0603
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = QueryOrchestrator(get_shared_cache(), get_accumulation_job())
    return _ORCHESTRATOR


def get_profile_enricher() -> ProfileEnricher:
    global _ENRICHER  # noqa: PLW0603
    if _ENRICHER is None:
        _ENRICHER = ProfileEnricher(get_investor_store(), get_shared_cache())
    return _ENRICHER


async def shutdown_services() -> None:
    """Flush background work and release connections, then forget every instance."""
    global _STORE, _CACHE, _PROGRESS, _JOB, _ORCHESTRATOR, _ENRICHER  # noqa: PLW0603
    if _ORCHESTRATOR is not None:
        await _ORCHESTRATOR.drain()
    if _ENRICHER is not None:
        await _ENRICHER.drain()
    await api_background.drain()
    if _STORE is not None and isinstance(_STORE.repository, SqlInvestorRepository):
        _STORE.repository.dispose()
    logger.info("investor_services.shutdown")
    _STORE = _CACHE = _PROGRESS = _JOB = _ORCHESTRATOR = _ENRICHER = None
