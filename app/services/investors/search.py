"""Query orchestrator: per-query cache, canonical fast path, then accumulation."""

from __future__ import annotations

import logging
import time

from app.config import settings
from app.models.investor import Investor, SearchResult
from app.observability.metrics import metrics
from app.services.investors.accumulation import AccumulationJob
from app.services.investors.background import BackgroundTasks
from app.services.investors.cache import SharedCache, normalize_query
from app.services.investors.identity import deduplicate
from app.services.investors.matching import InvestorMatcher, match_investors_by_keywords

logger = logging.getLogger(__name__)


class QueryOrchestrator:
    """Answers searches from the cheapest source that has results.

    Order: the per-query cache, keyword matching against the cached canonical
    set, then an accumulation run whose records are filtered down to the ones
    that match the query. ``search`` never raises; every failure
    degrades to an empty result. Cache writes happen in tracked background
    tasks so the response is not held up by them.
    """

    def __init__(
        self,
        cache: SharedCache,
        job: AccumulationJob,
        matcher: InvestorMatcher | None = None,
        *,
        page_size: int | None = None,
        background_refresh: bool | None = None,
    ) -> None:
        self._cache = cache
        self._job = job
        self._matcher = matcher or InvestorMatcher()
        self._page_size = page_size or settings.search_page_size
        self._background_refresh = (
            settings.search_background_refresh if background_refresh is None else background_refresh
        )
        self._background = BackgroundTasks("search")

    async def search(self, query: str) -> SearchResult:
        display_query = (query or "").strip()
        normalized = normalize_query(query)
        if not normalized:
            return SearchResult(query=display_query)

        start = time.perf_counter()
        path = "empty"
        try:
            entry = await self._cache.get_query(normalized)
            if entry is not None and entry.investors:
                path = "query_cache"
                return self._page(entry.investors, display_query, cached=True)

            canonical = await self._cache.get_cached_all()
            if canonical:
                matched = match_investors_by_keywords(canonical, normalized)
                if matched:
                    path = "keyword_match"
                    self._background.spawn(self._cache.set_query(normalized, matched), "cache_query")
                    updating = False
                    if self._background_refresh:
                        self._background.spawn(self._refresh(display_query), "refresh")
                        updating = True
                    return self._page(matched, display_query, cached=True, updating=updating)

            outcome = await self._job.run(display_query)
            matched = await self._matcher.match(deduplicate(outcome.investors).unique, normalized)
            if not matched:
                logger.warning(
                    "search.no_results",
                    extra={"query": normalized, "accumulated": len(outcome.investors)},
                )
                return SearchResult(query=display_query)
            path = "accumulated"
            self._background.spawn(
                self._cache.set_query(normalized, matched, outcome.raw_response), "cache_query"
            )
            return self._page(matched, display_query, cached=False)
        except Exception:
            path = "error"
            logger.exception("search.failed", extra={"query": normalized})
            return SearchResult(query=display_query)
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            metrics.increment("search.requests", tags={"path": path})
            metrics.timing("search.latency_ms", elapsed_ms, tags={"path": path})
            logger.info(
                "search.completed",
                extra={"query": normalized, "path": path, "duration_ms": round(elapsed_ms, 2)},
            )

    async def drain(self) -> None:
        """Wait for every scheduled background task to finish."""
        await self._background.drain()

    async def _refresh(self, query: str) -> None:
        outcome = await self._job.run(query)
        matched = await self._matcher.match(deduplicate(outcome.investors).unique, query)
        if matched:
            await self._cache.set_query(query, matched, outcome.raw_response)
            logger.info("search.refreshed", extra={"query": query, "count": len(matched)})

    def _page(
        self,
        investors: list[Investor],
        query: str,
        *,
        cached: bool,
        updating: bool = False,
    ) -> SearchResult:
        return SearchResult(
            investors=investors[: self._page_size],
            query=query,
            total=len(investors),
            cached=cached,
            updating=updating,
        )
