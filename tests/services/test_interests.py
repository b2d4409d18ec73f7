from __future__ import annotations

import pytest

from app.services.investors.errors import GenerativeSourceError
from app.services.investors.interests import (
    DEFAULT_INTERESTS,
    InterestExtractor,
    extract_interests,
    resolve_interests,
)
from tests.helpers.investors import StubChatClient, make_candidate


def test_keyword_extraction_matches_sector_vocabulary():
    candidate = make_candidate("Pat", bio="Backs fintech and artificial intelligence founders")

    assert extract_interests(candidate) == ["AI/ML", "FinTech"]
    assert extract_interests(make_candidate("Quiet")) == list(DEFAULT_INTERESTS)


def test_supplied_interests_win_over_keywords():
    candidate = make_candidate("Pat", bio="fintech", interests=["Gaming"])

    assert resolve_interests(candidate) == ["Gaming"]


@pytest.mark.asyncio
async def test_without_api_key_keywords_are_used():
    candidate = make_candidate("Pat", bio="edtech angel")

    assert await InterestExtractor().extract(candidate) == ["EdTech"]


@pytest.mark.asyncio
async def test_model_answer_is_used_when_available():
    client = StubChatClient(['{"interests": ["Climate", " ", "Energy"]}'])
    candidate = make_candidate("Rae", bio="grid storage investor")

    interests = await InterestExtractor(client=client, model="test-model").extract(candidate)

    assert interests == ["Climate", "Energy"]
    assert client.calls[0]["model"] == "test-model"
    assert "grid storage investor" in client.calls[0]["user_prompt"]


@pytest.mark.asyncio
async def test_model_failure_or_empty_answer_uses_keywords():
    candidate = make_candidate("Rae", bio="proptech and real estate")
    failing = InterestExtractor(client=StubChatClient(error=GenerativeSourceError("down", code="502_OPENAI_UPSTREAM")))
    empty = InterestExtractor(client=StubChatClient(['{"interests": []}']))
    garbage = InterestExtractor(client=StubChatClient(["not json"]))

    assert await failing.extract(candidate) == ["Real Estate"]
    assert await empty.extract(candidate) == ["Real Estate"]
    assert await garbage.extract(candidate) == ["Real Estate"]


@pytest.mark.asyncio
async def test_fill_missing_batches_only_untagged_candidates():
    client = StubChatClient(['{"interests": ["Deep Tech"]}'])
    extractor = InterestExtractor(client=client, batch_size=2, batch_delay_seconds=0)
    candidates = [
        make_candidate("A"),
        make_candidate("B", interests=["SaaS"]),
        make_candidate("C"),
        make_candidate("D"),
    ]

    filled = await extractor.fill_missing(candidates)

    assert [candidate.name for candidate in filled] == ["A", "B", "C", "D"]
    assert [candidate.interests for candidate in filled] == [
        ["Deep Tech"],
        ["SaaS"],
        ["Deep Tech"],
        ["Deep Tech"],
    ]
    assert len(client.calls) == 3
    assert candidates[0].interests == []
