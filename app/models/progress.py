"""Progress snapshot shared between the accumulation job and pollers."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, conint

from app.models.investor import CamelModel

ProgressStage = Literal["idle", "searching", "discovering", "crawling", "compiling", "almost_done", "complete"]


class ScrapeProgress(CamelModel):
    stage: ProgressStage
    message: str
    urls_found: int | None = None
    urls_crawled: int | None = None
    total_urls: int | None = None
    investors_found: int | None = None
    progress: conint(ge=0, le=100) | None = Field(default=None)  # type: ignore[valid-type]
