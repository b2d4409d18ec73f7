"""Fill in missing investor profile fields with a JSON chat model."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Final

from pydantic import ValidationError

from app.clients.openai_json import JSONChatClient, OpenAIJSONClient, parse_json_object
from app.config import settings
from app.models.investor import Investor, InvestorProfile, ScrapedInvestor
from app.observability.metrics import metrics
from app.services.investors.background import BackgroundTasks
from app.services.investors.cache import SharedCache
from app.services.investors.errors import InvestorValidationError
from app.services.investors.identity import merge_record
from app.services.investors.repositories import InvestorStore

logger = logging.getLogger(__name__)

ENRICHMENT_SYSTEM_PROMPT: Final[str] = """You are an expert at researching angel investors and venture capitalists.
Given an investor's basic information, return a JSON object that completes their profile.
Keep information that is already provided and only fill in what is missing.

Return:
- fullBio: extended biography (at least 200 words if not provided)
- profile: object with investmentStage (list), checkSize, geographicFocus (list),
  portfolio (5-10 notable companies), investmentPhilosophy, fundingSource, exitExpectations,
  decisionProcess, decisionSpeed, reputation, network, tractionRequired, boardParticipation

Be specific. Text fields should be substantial, not a single sentence.

Format: {"fullBio": "...", "profile": {...}}"""


@dataclass
class BatchEnrichmentResult:
    investors: list[Investor] = field(default_factory=list)
    updated: int = 0
    errors: list[str] = field(default_factory=list)


class ProfileEnricher:
    """Completes sparse records without ever overwriting populated data."""

    def __init__(
        self,
        store: InvestorStore,
        cache: SharedCache,
        *,
        client: JSONChatClient | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._client = client
        self._model = model or settings.enrichment_model
        self._temperature = (
            settings.enrichment_temperature if temperature is None else temperature
        )
        self._background = BackgroundTasks("enrichment")

    async def enrich(self, investor_id: str) -> Investor | None:
        """Enrich one stored record; ``None`` when the id is unknown."""
        investor = await self._store.get_by_id(investor_id)
        if investor is None:
            return None
        try:
            enriched = await self._enrich_one(investor)
        except Exception as exc:
            metrics.increment(
                "enrichment.errors", tags={"code": getattr(exc, "code", type(exc).__name__)}
            )
            logger.error(
                "enrichment.failed",
                extra={"investor_id": investor_id, "error": str(exc)},
            )
            return investor
        if enriched is not investor:
            await self._store.upsert_many([enriched])
            self._background.spawn(self._refresh_cache(), "refresh_cache")
        return enriched

    async def enrich_many(self, investor_ids: Iterable[str]) -> BatchEnrichmentResult:
        """Enrich each known id in turn; failures keep the stored record."""
        wanted = list(dict.fromkeys(investor_ids))
        result = BatchEnrichmentResult()
        for investor_id in wanted:
            investor = await self._store.get_by_id(investor_id)
            if investor is None:
                continue
            try:
                result.investors.append(await self._enrich_one(investor))
            except Exception as exc:
                logger.error(
                    "enrichment.failed",
                    extra={"investor_id": investor_id, "error": str(exc)},
                )
                result.errors.append(investor.name or investor.id)
                result.investors.append(investor)
        result.updated = len(result.investors)
        if result.investors:
            await self._store.upsert_many(result.investors)
            await self._refresh_cache()
        metrics.increment("enrichment.batch_updated", result.updated)
        logger.info(
            "enrichment.batch_completed",
            extra={"updated": result.updated, "failed": len(result.errors)},
        )
        return result

    async def drain(self) -> None:
        await self._background.drain()

    async def _enrich_one(self, investor: Investor) -> Investor:
        if investor.full_bio and investor.profile and investor.profile.is_complete():
            return investor
        client = self._ensure_client()
        if client is None:
            return investor

        start = time.perf_counter()
        raw = await client.generate(
            system_prompt=ENRICHMENT_SYSTEM_PROMPT,
            user_prompt=_render_user_prompt(investor),
            model=self._model,
            temperature=self._temperature,
        )
        metrics.timing("enrichment.latency_ms", (time.perf_counter() - start) * 1000)
        try:
            payload = parse_json_object(raw)
            profile = payload.get("profile")
            incoming = ScrapedInvestor(
                name=investor.name,
                source=investor.source,
                full_bio=payload.get("fullBio") or investor.full_bio or investor.bio,
            )
            parsed_profile = (
                InvestorProfile.model_validate(profile) if isinstance(profile, dict) else None
            )
        except (ValueError, ValidationError) as exc:
            raise InvestorValidationError(
                "Enrichment response was not a usable profile.", code="422_INVALID_ENRICHMENT"
            ) from exc
        enriched = merge_record(investor, incoming, profile=parsed_profile)
        logger.info("enrichment.completed", extra={"investor_id": investor.id})
        return enriched

    async def _refresh_cache(self) -> None:
        investors = await self._store.get_all()
        await self._cache.invalidate_all()
        await self._cache.set_cached_all(investors)

    def _ensure_client(self) -> JSONChatClient | None:
        if self._client:
            return self._client
        if not settings.openai_api_key:
            return None
        self._client = OpenAIJSONClient(settings.openai_api_key)
        return self._client


def _render_user_prompt(investor: Investor) -> str:
    contact = investor.contact_info.model_dump(by_alias=True, exclude_none=True)
    profile = investor.profile.model_dump(by_alias=True, exclude_none=True) if investor.profile else {}
    return "\n".join(
        [
            "Enrich the profile for this investor:",
            "",
            f"Name: {investor.name}",
            f"Bio: {investor.bio or ''}",
            f"Full Bio: {investor.full_bio or ''}",
            f"Location: {investor.location or ''}",
            f"Interests: {', '.join(investor.interests)}",
            f"Contact: {json.dumps(contact)}",
            f"Existing Profile: {json.dumps(profile)}",
            "",
            "Provide a complete profile with all missing fields filled in.",
        ]
    )
