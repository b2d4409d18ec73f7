"""Progress side-channel for accumulation runs."""

from __future__ import annotations

import logging
import random
from typing import Final

from pydantic import ValidationError

from app.models.progress import ProgressStage, ScrapeProgress
from app.services.investors.cache import SharedCache

logger = logging.getLogger(__name__)

PROGRESS_KEY: Final[str] = "scrape:progress"

PROGRESS_MESSAGES: Final[dict[str, tuple[str, ...]]] = {
    "searching": (
        "Searching for investors...",
        "Scanning the investor network...",
        "Looking for the perfect match...",
        "Finding investors in your space...",
        "Searching our investor database...",
        "Discovering potential investors...",
    ),
    "discovering": (
        "Finding relevant investors...",
        "Identifying potential matches...",
        "Analyzing investor profiles...",
        "Discovering investors in your industry...",
        "Finding investors who align with your vision...",
        "Locating the best investor matches...",
    ),
    "compiling": (
        "Compiling investor records...",
        "Organizing investor profiles...",
        "Gathering investor details...",
        "Building your investor list...",
        "Curating the best matches...",
        "Preparing investor information...",
    ),
    "almost_done": (
        "Almost done...",
        "Finalizing results...",
        "Wrapping things up...",
        "Putting the finishing touches...",
        "Almost ready...",
        "Just a moment more...",
    ),
    "processing": (
        "Processing investor data...",
        "Analyzing investor profiles...",
        "Refining the results...",
        "Optimizing your matches...",
        "Enhancing investor details...",
        "Polishing the data...",
    ),
    "starting": (
        "Starting search...",
        "Initializing search...",
        "Getting started...",
        "Preparing your search...",
        "Setting things up...",
        "Launching search...",
    ),
}


def query_index(query: str | None) -> int:
    """Stable per-query index so every poller sees the same phrasing."""
    return sum(ord(char) for char in query or "")


def progress_message(phase: str, count: int | None = None, index: int | None = None) -> str:
    messages = PROGRESS_MESSAGES.get(phase)
    if not messages:
        return "Processing..."
    if index is None:
        base = random.choice(messages)
    else:
        base = messages[index % len(messages)]
    if count:
        if phase in ("compiling", "processing"):
            return f"{base} ({count} investors found)"
        if phase == "discovering":
            return f"{base} ({count} matches so far)"
    return base


class ProgressTracker:
    """Stores the latest ScrapeProgress snapshot in the shared cache."""

    def __init__(self, cache: SharedCache) -> None:
        self._cache = cache

    async def set_progress(
        self,
        stage: ProgressStage,
        message: str,
        *,
        investors_found: int | None = None,
        progress: int | None = None,
    ) -> None:
        snapshot = ScrapeProgress(
            stage=stage,
            message=message,
            investors_found=investors_found,
            progress=progress,
        )
        await self._cache.set_json(
            PROGRESS_KEY, snapshot.model_dump(mode="json", by_alias=True, exclude_none=True)
        )

    async def get_progress(self) -> ScrapeProgress | None:
        payload = await self._cache.get_json(PROGRESS_KEY)
        if payload is None:
            return None
        try:
            return ScrapeProgress.model_validate(payload)
        except ValidationError:
            logger.warning("progress.invalid_snapshot")
            return None

    async def clear_progress(self) -> None:
        await self._cache.delete(PROGRESS_KEY)
