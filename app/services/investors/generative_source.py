"""LLM-backed source of candidate investor records."""

from __future__ import annotations

import hashlib
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Final

from pydantic import ValidationError

from app.clients.openai_json import JSONChatClient, OpenAIJSONClient, parse_json_object
from app.config import settings
from app.models.investor import ScrapedInvestor
from app.observability.metrics import metrics

logger = logging.getLogger(__name__)

SOURCE_LABEL: Final[str] = "OpenAI Search"
_UNKNOWN_NAME: Final[str] = "Unknown"
_TWITTER_HANDLE = re.compile(r"(?:twitter|x)\.com/([^/?#]+)", re.IGNORECASE)
_LINKEDIN_SLUG = re.compile(r"linkedin\.com/in/([^/?#]+)", re.IGNORECASE)

SEARCH_SYSTEM_PROMPT: Final[str] = """You are an expert at finding angel investors and venture capitalists.
Given a startup description or search query, return a JSON object with an "investors" array of
complete, detailed investor profiles. Never leave a field empty or null.

Each investor has:
- name: full name of the investor
- bio: short description (at least 50 words)
- fullBio: extended biography (at least 200 words) covering background, experience and investment history
- location: city or region where they are based
- image: optional profile image URL
- contactInfo: object with email, linkedin, twitter, website (at least two of them)
- interests: 3-5 investment sectors, e.g. ["SaaS", "AI/ML", "FinTech"]
- profile: object with investmentStage (list), checkSize, geographicFocus (list),
  portfolio (5-10 companies), investmentPhilosophy, fundingSource, exitExpectations,
  decisionProcess, decisionSpeed, reputation, network, tractionRequired, boardParticipation

Use real, known investors that match the query and be specific.

Format: {"investors": [{"name": "...", "bio": "...", "fullBio": "...", "location": "...",
"contactInfo": {...}, "interests": [...], "profile": {...}}]}"""


@dataclass
class CandidateBatch:
    candidates: list[ScrapedInvestor] = field(default_factory=list)
    raw_response: str | None = None


class OpenAIInvestorSource:
    """Turns a free-text query into candidate investors via a JSON chat model.

    Never raises: a missing API key, an upstream failure or an unparseable
    answer all yield an empty batch.
    """

    def __init__(
        self,
        *,
        client: JSONChatClient | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> None:
        self._client = client
        self._model = model or settings.investor_search_model
        self._temperature = (
            settings.investor_search_temperature if temperature is None else temperature
        )

    async def fetch_candidates(self, query: str) -> list[ScrapedInvestor]:
        batch = await self.search(query)
        return batch.candidates

    async def search(self, query: str) -> CandidateBatch:
        start = time.perf_counter()
        status = "success"
        try:
            client = self._ensure_client()
            if client is None:
                status = "disabled"
                logger.warning("generative_source.disabled", extra={"query": query})
                return CandidateBatch()
            raw_response = await client.generate(
                system_prompt=SEARCH_SYSTEM_PROMPT,
                user_prompt=_render_user_prompt(query),
                model=self._model,
                temperature=self._temperature,
            )
            candidates = parse_candidates(raw_response)
            if not candidates:
                logger.warning("generative_source.empty", extra={"query": query})
            logger.info(
                "generative_source.fetched",
                extra={"query": query, "candidates": len(candidates)},
            )
            return CandidateBatch(candidates=candidates, raw_response=raw_response)
        except Exception as exc:
            status = "error"
            metrics.increment(
                "generative_source.errors",
                tags={"code": getattr(exc, "code", type(exc).__name__)},
            )
            logger.error(
                "generative_source.failed",
                extra={"query": query, "error": str(exc)},
            )
            return CandidateBatch()
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            metrics.timing("generative_source.latency_ms", elapsed_ms, tags={"status": status})

    def _ensure_client(self) -> JSONChatClient | None:
        if self._client:
            return self._client
        if not settings.openai_api_key:
            return None
        self._client = OpenAIJSONClient(settings.openai_api_key)
        return self._client


def parse_candidates(raw_response: str) -> list[ScrapedInvestor]:
    """Validate the model's ``investors`` array into candidate records."""
    try:
        payload = parse_json_object(raw_response)
    except ValueError:
        logger.error("generative_source.parse_error")
        return []
    entries = payload.get("investors")
    if not isinstance(entries, list):
        return []

    candidates: list[ScrapedInvestor] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            candidate = ScrapedInvestor.model_validate(
                {
                    **entry,
                    "source": SOURCE_LABEL,
                    "raw_text": _raw_text(entry),
                }
            )
        except ValidationError:
            logger.warning("generative_source.invalid_entry")
            continue
        if not candidate.name or candidate.name == _UNKNOWN_NAME:
            continue
        if not candidate.image:
            candidate.image = derive_image_url(candidate)
        candidates.append(candidate)
    return candidates


def derive_image_url(candidate: ScrapedInvestor) -> str | None:
    """Best-guess avatar from the candidate's social handles or email."""
    contact = candidate.contact_info
    if contact.twitter:
        match = _TWITTER_HANDLE.search(contact.twitter)
        if match:
            return f"https://unavatar.io/twitter/{match.group(1)}"
    if contact.email:
        digest = hashlib.md5(contact.email.lower().strip().encode("utf-8")).hexdigest()
        return f"https://www.gravatar.com/avatar/{digest}?d=identicon&s=200"
    if contact.linkedin:
        match = _LINKEDIN_SLUG.search(contact.linkedin)
        if match:
            return f"https://unavatar.io/linkedin/{match.group(1)}"
    return None


def _raw_text(entry: dict[str, Any]) -> str:
    interests = entry.get("interests") if isinstance(entry.get("interests"), list) else []
    parts = [
        entry.get("name"),
        entry.get("bio"),
        entry.get("fullBio"),
        entry.get("location"),
        " ".join(str(item) for item in interests),
    ]
    return " ".join(str(part) for part in parts if part)


def _render_user_prompt(query: str) -> str:
    return (
        f'Find angel investors and venture capitalists that would be interested in: "{query}".\n'
        "Return 10-20 relevant investors with complete profiles: bio and fullBio, contact "
        "information, 3-5 interests and every profile field filled in with specific details."
    )
