from __future__ import annotations

import hashlib
import json

import pytest

from app.clients.openai_json import parse_json_object
from app.services.investors import generative_source as source_module
from app.services.investors.errors import GenerativeSourceError
from app.services.investors.generative_source import (
    SOURCE_LABEL,
    OpenAIInvestorSource,
    derive_image_url,
    parse_candidates,
)
from tests.helpers.investors import StubChatClient, make_candidate
from tests.helpers.metrics_stub import StubMetrics


def _response(*investors: dict) -> str:
    return json.dumps({"investors": list(investors)})


@pytest.mark.asyncio
async def test_search_parses_candidates_and_keeps_raw_response():
    raw = _response(
        {
            "name": "Naval Ravikant",
            "bio": "Angel investor",
            "fullBio": "Co-founder of AngelList",
            "location": "San Francisco",
            "contactInfo": {"twitter": "https://twitter.com/naval", "website": "https://nav.al"},
            "interests": ["SaaS", "Crypto"],
            "profile": {"investmentStage": ["Seed"], "checkSize": "$25K - $100K"},
        }
    )
    client = StubChatClient([raw])
    source = OpenAIInvestorSource(client=client, model="test-model", temperature=0.1)

    batch = await source.search("consumer crypto")

    assert batch.raw_response == raw
    [candidate] = batch.candidates
    assert candidate.name == "Naval Ravikant"
    assert candidate.source == SOURCE_LABEL
    assert candidate.full_bio == "Co-founder of AngelList"
    assert candidate.interests == ["SaaS", "Crypto"]
    assert candidate.profile.investment_stage == ["Seed"]
    assert candidate.image == "https://unavatar.io/twitter/naval"
    assert "Naval Ravikant" in candidate.raw_text
    assert client.calls[0]["model"] == "test-model"
    assert "consumer crypto" in client.calls[0]["user_prompt"]


def test_parse_candidates_drops_unknown_and_nameless_entries():
    raw = _response(
        {"name": "Unknown", "bio": "?"},
        {"bio": "no name"},
        "not an object",
        {"name": "  Elad Gil  ", "interests": "AI/ML"},
    )

    candidates = parse_candidates(raw)

    assert [candidate.name for candidate in candidates] == ["Elad Gil"]
    assert candidates[0].interests == ["AI/ML"]


def test_parse_candidates_tolerates_code_fences():
    raw = "```json\n" + _response({"name": "Fenced"}) + "\n```"

    assert [candidate.name for candidate in parse_candidates(raw)] == ["Fenced"]


def test_parse_candidates_returns_empty_for_garbage():
    assert parse_candidates("no json here") == []
    assert parse_candidates('{"investors": "nope"}') == []


def test_parse_json_object_rejects_arrays():
    with pytest.raises(ValueError):
        parse_json_object("[1, 2, 3]")


def test_image_falls_back_to_gravatar_then_linkedin():
    email = make_candidate("Mail", contact_info={"email": " Person@Example.com "})
    digest = hashlib.md5(b"person@example.com").hexdigest()
    assert derive_image_url(email) == f"https://www.gravatar.com/avatar/{digest}?d=identicon&s=200"

    linked = make_candidate("Link", contact_info={"linkedin": "https://www.linkedin.com/in/someone/"})
    assert derive_image_url(linked) == "https://unavatar.io/linkedin/someone"

    assert derive_image_url(make_candidate("Nobody")) is None


@pytest.mark.asyncio
async def test_missing_api_key_yields_empty_batch(monkeypatch):
    monkeypatch.setattr(source_module.settings, "openai_api_key", None, raising=False)

    batch = await OpenAIInvestorSource().search("anything")

    assert batch.candidates == []
    assert batch.raw_response is None


@pytest.mark.asyncio
async def test_upstream_failure_yields_empty_batch(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(source_module, "metrics", stub)
    client = StubChatClient(error=GenerativeSourceError("rate limited", code="429_RATE_LIMIT"))

    candidates = await OpenAIInvestorSource(client=client).fetch_candidates("anything")

    assert candidates == []
    assert stub.increment_calls[0]["metric"] == "generative_source.errors"
    assert stub.increment_calls[0]["tags"] == {"code": "429_RATE_LIMIT"}


@pytest.mark.asyncio
async def test_fetch_candidates_returns_validated_records():
    client = StubChatClient([_response({"name": "Sarah Guo", "bio": "AI investor"}, {"name": "Unknown"})])

    candidates = await OpenAIInvestorSource(client=client).fetch_candidates("ai infra")

    assert [candidate.name for candidate in candidates] == ["Sarah Guo"]
    assert candidates[0].source == SOURCE_LABEL
    assert len(client.calls) == 1
