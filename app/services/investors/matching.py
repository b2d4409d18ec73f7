"""Query relevance: keyword scoring and model-assisted matching."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Final

from app.clients.openai_json import JSONChatClient, OpenAIJSONClient, parse_json_object
from app.config import settings
from app.models.investor import Investor, coerce_text_list
from app.observability.metrics import metrics
from app.services.investors.cache import normalize_query
from app.services.investors.errors import InvestorServiceError
from app.services.investors.identity import normalize_name

logger = logging.getLogger(__name__)

EXACT_NAME_WEIGHT: Final[int] = 10
NAME_SUBSTRING_WEIGHT: Final[int] = 5
KEYWORD_WEIGHT: Final[int] = 1
INTEREST_WEIGHT: Final[int] = 2
MIN_KEYWORD_LENGTH: Final[int] = 3


def query_keywords(query: str) -> list[str]:
    return [word for word in normalize_query(query).split() if len(word) >= MIN_KEYWORD_LENGTH]


def score_investor(investor: Investor, query: str) -> int:
    normalized = normalize_query(query)
    if not normalized:
        return 0

    score = 0
    name = normalize_name(investor.name)
    if name and name == normalized:
        score += EXACT_NAME_WEIGHT
    elif name and (normalized in name or name in normalized):
        score += NAME_SUBSTRING_WEIGHT

    text = " ".join(
        [investor.name, investor.bio or "", investor.location or "", " ".join(investor.interests)]
    ).lower()
    score += sum(KEYWORD_WEIGHT for keyword in query_keywords(normalized) if keyword in text)

    for interest in investor.interests:
        tag = interest.lower()
        if tag and (tag in normalized or normalized in tag):
            score += INTEREST_WEIGHT
    return score


def match_investors_by_keywords(investors: Iterable[Investor], query: str) -> list[Investor]:
    """Investors with a positive score, best first; ties keep their input order."""
    scored = [(score_investor(investor, query), investor) for investor in investors]
    ranked = sorted((item for item in scored if item[0] > 0), key=lambda item: item[0], reverse=True)
    return [investor for _, investor in ranked]


MATCH_SYSTEM_PROMPT = """\
You are an expert at matching startups with angel investors. Given a startup description and a list of
investors, return a JSON object {"matches": [...]} with the names of the investors (exactly as provided)
that would be a good match, ordered by relevance. Only return investor names that are in the list.
"""
BIO_SNIPPET_LENGTH: Final[int] = 100


class InvestorMatcher:
    """Picks the investors relevant to a query from a candidate pool.

    The JSON chat model ranks the pool when an API key is configured. Keyword
    scoring is used when there is no key, the call fails, or the model names
    nobody from the pool. Records that match neither way are dropped.
    """

    def __init__(
        self,
        *,
        client: JSONChatClient | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_investors: int | None = None,
    ) -> None:
        self._client = client
        self._model = model or settings.match_model
        self._temperature = settings.match_temperature if temperature is None else temperature
        self._max_investors = max_investors or settings.match_max_investors

    async def match(self, investors: Iterable[Investor], query: str) -> list[Investor]:
        pool = list(investors)
        if not pool:
            return []
        client = self._ensure_client()
        if client is None:
            return match_investors_by_keywords(pool, query)
        try:
            raw = await client.generate(
                system_prompt=MATCH_SYSTEM_PROMPT,
                user_prompt=_render_user_prompt(pool[: self._max_investors], query),
                model=self._model,
                temperature=self._temperature,
            )
            payload = parse_json_object(raw)
        except (InvestorServiceError, ValueError) as exc:
            metrics.increment("matching.errors", tags={"code": getattr(exc, "code", "PARSE_ERROR")})
            logger.warning("matching.failed", extra={"query": query, "error": str(exc)})
            return match_investors_by_keywords(pool, query)

        names = coerce_text_list(payload.get("matches") or payload.get("investors"))
        matched = _select_by_names(pool, names)
        if not matched:
            logger.info("matching.keyword_fallback", extra={"query": query})
            return match_investors_by_keywords(pool, query)
        return matched

    def _ensure_client(self) -> JSONChatClient | None:
        if self._client:
            return self._client
        if not settings.openai_api_key:
            return None
        self._client = OpenAIJSONClient(settings.openai_api_key)
        return self._client


def _select_by_names(pool: list[Investor], names: list[str]) -> list[Investor]:
    """Pool members named in ``names``, in the model's order; each appears once."""
    selected: list[Investor] = []
    seen: set[str] = set()
    for name in names:
        wanted = name.lower()
        for investor in pool:
            key = normalize_name(investor.name)
            if key and key not in seen and key in wanted:
                selected.append(investor)
                seen.add(key)
    return selected


def _render_user_prompt(investors: list[Investor], query: str) -> str:
    lines = [
        f"Name: {investor.name}, Interests: {', '.join(investor.interests)}, "
        f"Bio: {(investor.bio or 'N/A')[:BIO_SNIPPET_LENGTH]}"
        for investor in investors
    ]
    summary = "\n".join(lines)
    return (
        f'Startup query: "{query}"\n\nInvestors:\n{summary}\n\n'
        "Return the matching investor names, ordered by relevance."
    )
