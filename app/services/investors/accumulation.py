"""Single-flight accumulation job that grows the canonical investor set."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from app.config import settings
from app.models.investor import Investor, ScrapedInvestor
from app.observability.metrics import metrics
from app.services.investors.cache import SharedCache, normalize_query
from app.services.investors.generative_source import CandidateBatch
from app.services.investors.identity import (
    build_investor,
    deduplicate,
    make_id,
    merge_record,
    normalize_name,
)
from app.services.investors.interests import InterestExtractor, resolve_interests
from app.services.investors.progress import ProgressTracker, progress_message, query_index
from app.services.investors.repositories import InvestorStore

logger = logging.getLogger(__name__)


class CandidateSource(Protocol):
    async def search(self, query: str) -> CandidateBatch:
        ...


@dataclass
class AccumulationOutcome:
    investors: list[Investor] = field(default_factory=list)
    raw_response: str | None = None
    added: int = 0
    updated: int = 0


class AccumulationJob:
    """Fetches candidates for a query and folds them into the canonical set.

    At most one run is active per instance. A caller asking for the query that
    is already running shares that run's outcome; a caller asking for any other
    query gets an empty outcome straight away. Across processes the shared
    cache lock keeps runs apart, and a lock whose holder has not reported for
    ``stale_lock_seconds`` is broken.
    """

    def __init__(
        self,
        store: InvestorStore,
        cache: SharedCache,
        source: CandidateSource,
        progress: ProgressTracker | None = None,
        interests: InterestExtractor | None = None,
        *,
        stale_lock_seconds: float | None = None,
        poll_interval_seconds: float | None = None,
        max_poll_attempts: int | None = None,
        progress_clear_delay_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._source = source
        self._progress = progress or ProgressTracker(cache)
        self._interests = interests or InterestExtractor()
        self._stale_lock_seconds = (
            settings.stale_lock_seconds if stale_lock_seconds is None else stale_lock_seconds
        )
        self._poll_interval = (
            settings.lock_wait_poll_interval_seconds
            if poll_interval_seconds is None
            else poll_interval_seconds
        )
        self._max_poll_attempts = (
            settings.lock_wait_max_attempts if max_poll_attempts is None else max_poll_attempts
        )
        self._progress_clear_delay = (
            settings.progress_clear_delay_seconds
            if progress_clear_delay_seconds is None
            else progress_clear_delay_seconds
        )
        self._running_query: str | None = None
        self._running_task: asyncio.Task[AccumulationOutcome] | None = None

    @property
    def running_query(self) -> str | None:
        return self._running_query if self.is_running else None

    @property
    def is_running(self) -> bool:
        return self._running_task is not None and not self._running_task.done()

    async def accumulate(self, query: str) -> list[Investor]:
        outcome = await self.run(query)
        return outcome.investors

    async def run(self, query: str) -> AccumulationOutcome:
        normalized = normalize_query(query)
        if not normalized:
            return AccumulationOutcome()

        # No await between the check and the claim below.
        if self.is_running:
            if self._running_query == normalized:
                metrics.increment("accumulation.coalesced")
                logger.info("accumulation.coalesced", extra={"query": normalized})
                return await asyncio.shield(self._running_task)
            metrics.increment("accumulation.rejected")
            logger.info(
                "accumulation.rejected",
                extra={"query": normalized, "running_query": self._running_query},
            )
            return AccumulationOutcome()

        task = asyncio.create_task(self._run_exclusive(query.strip(), normalized))
        self._running_query = normalized
        self._running_task = task
        task.add_done_callback(self._release_claim)
        return await asyncio.shield(task)

    def _release_claim(self, task: asyncio.Task[AccumulationOutcome]) -> None:
        if self._running_task is task:
            self._running_task = None
            self._running_query = None

    async def _run_exclusive(self, query: str, normalized: str) -> AccumulationOutcome:
        start = time.perf_counter()
        status = "success"
        acquired = False
        try:
            if await self._cache.is_locked():
                if await self._lock_is_stale():
                    metrics.increment("accumulation.stale_lock_cleared")
                    logger.warning("accumulation.stale_lock_cleared", extra={"query": normalized})
                    await self._cache.clear_lock()
                else:
                    status = "waited"
                    return await self._wait_for_other_run(normalized)

            await self._cache.set_locked(True)
            acquired = True
            metrics.increment("accumulation.runs")
            logger.info("accumulation.started", extra={"query": normalized})
            outcome = await self._accumulate(query, normalized)
            if not outcome.investors:
                status = "empty"
            return outcome
        except Exception as exc:
            status = "error"
            metrics.increment(
                "accumulation.errors",
                tags={"code": getattr(exc, "code", type(exc).__name__)},
            )
            logger.exception("accumulation.failed", extra={"query": normalized})
            return AccumulationOutcome()
        finally:
            if acquired:
                await self._cache.set_locked(False)
                await self._progress.clear_progress()
            elapsed_ms = (time.perf_counter() - start) * 1000
            metrics.timing("accumulation.latency_ms", elapsed_ms, tags={"status": status})
            logger.info(
                "accumulation.finished",
                extra={"query": normalized, "status": status, "duration_ms": round(elapsed_ms, 2)},
            )

    async def _lock_is_stale(self) -> bool:
        last_run = await self._cache.get_last_run_time()
        if last_run is None:
            return True
        age = (datetime.now(timezone.utc) - last_run).total_seconds()
        return age > self._stale_lock_seconds

    async def _wait_for_other_run(self, normalized: str) -> AccumulationOutcome:
        logger.info("accumulation.waiting", extra={"query": normalized})
        for _ in range(self._max_poll_attempts):
            await asyncio.sleep(self._poll_interval)
            if await self._progress.get_progress() is not None:
                continue
            cached = await self._cache.get_cached_all()
            if cached:
                logger.info(
                    "accumulation.reused_other_run",
                    extra={"query": normalized, "count": len(cached)},
                )
                return AccumulationOutcome(investors=deduplicate(cached).unique)
            break
        logger.warning("accumulation.wait_timeout", extra={"query": normalized})
        return AccumulationOutcome()

    async def _accumulate(self, query: str, normalized: str) -> AccumulationOutcome:
        index = query_index(query)
        await self._progress.set_progress(
            "searching", progress_message("starting", index=index), progress=5
        )

        batch = await self._source.search(query)
        if not batch.candidates:
            logger.warning("accumulation.no_candidates", extra={"query": normalized})
            return AccumulationOutcome(raw_response=batch.raw_response)

        await self._progress.set_progress(
            "compiling",
            progress_message("processing", len(batch.candidates), index),
            investors_found=len(batch.candidates),
            progress=80,
        )

        existing = await self._store.get_all()
        candidates = await self._interests.fill_missing(batch.candidates)
        folded = fold_candidates(existing, candidates)

        await self._store.replace_all(folded.canonical)
        await self._cache.invalidate_all()
        await self._cache.set_cached_all(folded.canonical)

        outcome = AccumulationOutcome(
            investors=folded.touched,
            raw_response=batch.raw_response,
            added=folded.added,
            updated=folded.updated,
        )
        metrics.increment("accumulation.added", outcome.added)
        metrics.increment("accumulation.updated", outcome.updated)
        logger.info(
            "accumulation.persisted",
            extra={
                "query": normalized,
                "total": len(folded.canonical),
                "added": outcome.added,
                "updated": outcome.updated,
            },
        )

        await self._progress.set_progress(
            "almost_done",
            progress_message("almost_done", len(outcome.investors), index),
            investors_found=len(outcome.investors),
            progress=95,
        )
        if self._progress_clear_delay > 0:
            await asyncio.sleep(self._progress_clear_delay)
        return outcome


@dataclass
class FoldResult:
    canonical: list[Investor] = field(default_factory=list)
    touched: list[Investor] = field(default_factory=list)
    added: int = 0
    updated: int = 0


def fold_candidates(existing: list[Investor], candidates: list[ScrapedInvestor]) -> FoldResult:
    """Merge candidates into a snapshot of the canonical set, one at a time.

    Identity is resolved by id first, then by normalized name against the
    snapshot, then against records created earlier in the same batch.
    Candidates are processed sequentially so later ones observe earlier merges.
    """
    by_id: dict[str, Investor] = {investor.id: investor for investor in existing}
    name_to_id: dict[str, str] = {}
    for investor in existing:
        name_to_id.setdefault(normalize_name(investor.name), investor.id)
    new_by_name: dict[str, Investor] = {}
    touched: dict[str, Investor] = {}
    result = FoldResult()
    now = datetime.now(timezone.utc)

    for candidate in candidates:
        key = normalize_name(candidate.name)
        if not key:
            continue
        interests = resolve_interests(candidate)
        candidate_id = make_id(candidate.name or "", candidate.source)
        current_id = candidate_id if candidate_id in by_id else name_to_id.get(key)

        if current_id is not None:
            merged = merge_record(by_id[current_id], candidate, interests, candidate.profile, now=now)
            by_id[current_id] = merged
            result.updated += 1
        elif key in new_by_name:
            merged = merge_record(new_by_name[key], candidate, interests, candidate.profile, now=now)
            new_by_name[key] = merged
            result.updated += 1
        else:
            merged = build_investor(candidate, interests, now=now)
            new_by_name[key] = merged
            result.added += 1
        touched[key] = merged

    combined = deduplicate([*by_id.values(), *new_by_name.values()])
    if combined.duplicates_removed or combined.invalid_removed:
        logger.info(
            "accumulation.deduplicated",
            extra={
                "duplicates_removed": combined.duplicates_removed,
                "invalid_removed": combined.invalid_removed,
            },
        )
    result.canonical = combined.unique
    result.touched = deduplicate(touched.values()).unique
    return result
