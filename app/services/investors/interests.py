"""Interest tagging for candidates that arrive without tags."""

from __future__ import annotations

import asyncio
import logging
from typing import Final

from app.clients.openai_json import JSONChatClient, OpenAIJSONClient, parse_json_object
from app.config import settings
from app.models.investor import ScrapedInvestor, coerce_text_list
from app.observability.metrics import metrics
from app.services.investors.errors import InvestorServiceError

logger = logging.getLogger(__name__)

MAX_INTERESTS: Final[int] = 6
DEFAULT_INTERESTS: Final[tuple[str, ...]] = ("Early Stage", "Technology")

INTEREST_KEYWORDS: Final[dict[str, tuple[str, ...]]] = {
    "SaaS": ("saas", "software as a service", "cloud software"),
    "AI/ML": ("ai", "artificial intelligence", "machine learning", "ml", "deep learning", "neural network"),
    "FinTech": ("fintech", "financial technology", "payments", "banking", "crypto", "blockchain"),
    "Healthcare": ("healthcare", "health tech", "medical", "biotech", "pharma"),
    "E-commerce": ("e-commerce", "ecommerce", "retail", "marketplace"),
    "B2B Software": ("b2b", "enterprise software", "enterprise"),
    "Consumer": ("consumer", "consumer tech", "b2c"),
    "EdTech": ("edtech", "education", "learning"),
    "Real Estate": ("real estate", "proptech", "property"),
    "Gaming": ("gaming", "game", "esports"),
    "Media": ("media", "content", "entertainment"),
    "Transportation": ("transportation", "mobility", "logistics"),
}


def extract_interests(candidate: ScrapedInvestor) -> list[str]:
    """Match the candidate's text against the sector vocabulary."""
    text = " ".join(
        part for part in (candidate.bio, candidate.full_bio, candidate.raw_text) if part
    ).lower()
    found = [
        interest
        for interest, keywords in INTEREST_KEYWORDS.items()
        if any(keyword in text for keyword in keywords)
    ]
    if not found:
        return list(DEFAULT_INTERESTS)
    return found[:MAX_INTERESTS]


def resolve_interests(candidate: ScrapedInvestor) -> list[str]:
    """Prefer tags supplied by the model; fall back to keyword extraction."""
    if candidate.interests:
        return list(candidate.interests)
    return extract_interests(candidate)


INTEREST_SYSTEM_PROMPT = """\
You are an expert at analyzing investor profiles and extracting their investment interests and focus areas.
Return a JSON object with an "interests" array containing specific investment interests, sectors, or
industries they focus on. Be specific and extract 3-8 relevant interests. Examples: "SaaS", "AI/ML",
"FinTech", "Healthcare", "E-commerce", "B2B Software".
"""
PROFILE_TEXT_LIMIT: Final[int] = 2000


class InterestExtractor:
    """Tags candidates that arrive without interests using the JSON chat model.

    Keyword extraction is used whenever no API key is configured, the call
    fails, or the model answers with an empty list.
    """

    def __init__(
        self,
        *,
        client: JSONChatClient | None = None,
        model: str | None = None,
        temperature: float | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
    ) -> None:
        self._client = client
        self._model = model or settings.interest_model
        self._temperature = settings.interest_temperature if temperature is None else temperature
        self._batch_size = max(1, batch_size or settings.interest_batch_size)
        self._batch_delay = (
            settings.interest_batch_delay_seconds if batch_delay_seconds is None else batch_delay_seconds
        )

    async def extract(self, candidate: ScrapedInvestor) -> list[str]:
        client = self._ensure_client()
        if client is None:
            return extract_interests(candidate)
        try:
            raw = await client.generate(
                system_prompt=INTEREST_SYSTEM_PROMPT,
                user_prompt=_render_user_prompt(candidate),
                model=self._model,
                temperature=self._temperature,
            )
            interests = coerce_text_list(parse_json_object(raw).get("interests"))
        except (InvestorServiceError, ValueError) as exc:
            metrics.increment("interests.errors", tags={"code": getattr(exc, "code", "PARSE_ERROR")})
            logger.warning(
                "interests.extraction_failed",
                extra={"investor": candidate.name, "error": str(exc)},
            )
            return extract_interests(candidate)
        if not interests:
            return extract_interests(candidate)
        return interests

    async def fill_missing(self, candidates: list[ScrapedInvestor]) -> list[ScrapedInvestor]:
        """Return the candidates with interests filled in, in the same order.

        Only candidates without interests are sent to the model, a batch at a time.
        """
        missing = [index for index, candidate in enumerate(candidates) if not candidate.interests]
        if not missing:
            return list(candidates)

        filled = list(candidates)
        for offset in range(0, len(missing), self._batch_size):
            batch = missing[offset : offset + self._batch_size]
            results = await asyncio.gather(*(self.extract(candidates[index]) for index in batch))
            for index, interests in zip(batch, results):
                filled[index] = candidates[index].model_copy(update={"interests": interests})
            if offset + self._batch_size < len(missing) and self._batch_delay > 0:
                await asyncio.sleep(self._batch_delay)
        logger.info("interests.extracted", extra={"count": len(missing)})
        return filled

    def _ensure_client(self) -> JSONChatClient | None:
        if self._client:
            return self._client
        if not settings.openai_api_key:
            return None
        self._client = OpenAIJSONClient(settings.openai_api_key)
        return self._client


def _render_user_prompt(candidate: ScrapedInvestor) -> str:
    text = "\n".join(part for part in (candidate.name, candidate.bio, candidate.raw_text) if part)
    return f"Extract investment interests from this investor profile:\n\n{text[:PROFILE_TEXT_LIMIT]}"
