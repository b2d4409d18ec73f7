from __future__ import annotations

import pytest

from app.services.investors.accumulation import AccumulationJob, AccumulationOutcome
from app.services.investors.cache import InMemoryCacheBackend, SharedCache, query_key
from app.services.investors.errors import GenerativeSourceError
from app.services.investors.matching import InvestorMatcher, match_investors_by_keywords, score_investor
from app.services.investors.repositories import InMemoryInvestorRepository, InvestorStore
from app.services.investors.search import QueryOrchestrator
from tests.helpers.investors import FailingCacheBackend, StubChatClient, StubSource, make_candidate, make_investor


@pytest.fixture
def cache():
    return SharedCache(InMemoryCacheBackend())


def _orchestrator(cache: SharedCache, source: StubSource, **options) -> QueryOrchestrator:
    store = InvestorStore(InMemoryInvestorRepository(), read_cache_ttl_seconds=0)
    job = AccumulationJob(
        store,
        cache,
        source,
        poll_interval_seconds=0,
        max_poll_attempts=1,
        progress_clear_delay_seconds=0,
    )
    return QueryOrchestrator(cache, job, **options)


class ExplodingJob:
    def __init__(self) -> None:
        self.calls = 0

    async def run(self, query: str) -> AccumulationOutcome:
        self.calls += 1
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_fast_path_matches_interest_without_generative_call(cache):
    await cache.set_cached_all([make_investor("Grace Hopper", interests=["AI/ML"])])
    source = StubSource([make_candidate("Should Not Appear")])
    orchestrator = _orchestrator(cache, source)

    result = await orchestrator.search("ai")
    await orchestrator.drain()

    assert [investor.name for investor in result.investors] == ["Grace Hopper"]
    assert result.cached is True
    assert result.updating is False
    assert source.calls == []
    entry = await cache.get_query("ai")
    assert [investor.name for investor in entry.investors] == ["Grace Hopper"]


@pytest.mark.asyncio
async def test_query_cache_hit_short_circuits(cache):
    await cache.set_query("fintech", [make_investor("Cached Person")])
    source = StubSource([make_candidate("Fresh Person")])

    result = await _orchestrator(cache, source).search("  FinTech ")

    assert [investor.name for investor in result.investors] == ["Cached Person"]
    assert result.cached is True
    assert result.query == "FinTech"
    assert source.calls == []


@pytest.mark.asyncio
async def test_miss_runs_accumulation_and_caches_with_raw_response(cache):
    source = StubSource(
        [make_candidate("Hal Finney", bio="crypto angel", interests=["FinTech"])],
        raw_response='{"investors": [{"name": "Hal Finney"}]}',
    )
    orchestrator = _orchestrator(cache, source)

    result = await orchestrator.search("crypto fintech")
    await orchestrator.drain()

    assert [investor.name for investor in result.investors] == ["Hal Finney"]
    assert result.cached is False
    assert result.total == 1
    assert source.calls == ["crypto fintech"]
    entry = await cache.get_query("crypto fintech")
    assert entry.raw_response == '{"investors": [{"name": "Hal Finney"}]}'

    again = await orchestrator.search("crypto fintech")
    assert again.cached is True
    assert len(source.calls) == 1


@pytest.mark.asyncio
async def test_results_are_bounded_by_page_size(cache):
    await cache.set_query("saas", [make_investor(f"Investor {idx}") for idx in range(7)])

    result = await _orchestrator(cache, StubSource(), page_size=3).search("saas")

    assert len(result.investors) == 3
    assert result.total == 7


@pytest.mark.asyncio
async def test_blank_query_returns_empty_without_backends():
    cache = SharedCache(FailingCacheBackend())
    source = StubSource([make_candidate("Anyone")])

    result = await _orchestrator(cache, source).search("   ")

    assert result.investors == []
    assert result.total == 0
    assert source.calls == []


@pytest.mark.asyncio
async def test_unavailable_cache_still_accumulates():
    cache = SharedCache(FailingCacheBackend())
    source = StubSource([make_candidate("Ida Lovelace", bio="analytics angel")])

    result = await _orchestrator(cache, source).search("analytics")

    assert [investor.name for investor in result.investors] == ["Ida Lovelace"]


@pytest.mark.asyncio
async def test_job_failure_degrades_to_empty_result(cache):
    job = ExplodingJob()
    orchestrator = QueryOrchestrator(cache, job)

    result = await orchestrator.search("anything")

    assert result.investors == []
    assert result.cached is False
    assert job.calls == 1


@pytest.mark.asyncio
async def test_background_refresh_marks_result_updating(cache):
    await cache.set_cached_all([make_investor("Grace Hopper", interests=["AI/ML"])])
    source = StubSource([make_candidate("June Newcomer", interests=["AI/ML"])])
    orchestrator = _orchestrator(cache, source, background_refresh=True)

    result = await orchestrator.search("ai")
    assert result.updating is True
    await orchestrator.drain()

    assert source.calls == ["ai"]
    entry = await cache.get_query("ai")
    assert [investor.name for investor in entry.investors] == ["June Newcomer"]


@pytest.mark.asyncio
async def test_canonical_set_reused_from_other_run_is_filtered_to_the_query(cache):
    await cache.set_locked(True)
    await cache.set_cached_all(
        [make_investor(f"Real Estate Person {idx}", interests=["Real Estate"]) for idx in range(60)]
    )
    source = StubSource([make_candidate("Never Called")])
    orchestrator = _orchestrator(cache, source)

    result = await orchestrator.search("quantum biotech")
    await orchestrator.drain()

    assert result.investors == []
    assert result.total == 0
    assert source.calls == []
    assert await cache.get_query("quantum biotech") is None


@pytest.mark.asyncio
async def test_accumulated_records_are_narrowed_by_the_model(cache):
    source = StubSource(
        [make_candidate("Lena Ortiz", interests=["Climate"]), make_candidate("Max Field", interests=["Gaming"])]
    )
    client = StubChatClient(['{"matches": ["Lena Ortiz"]}'])
    orchestrator = _orchestrator(cache, source, matcher=InvestorMatcher(client=client))

    result = await orchestrator.search("carbon capture")
    await orchestrator.drain()

    assert [investor.name for investor in result.investors] == ["Lena Ortiz"]
    entry = await cache.get_query("carbon capture")
    assert [investor.name for investor in entry.investors] == ["Lena Ortiz"]
    assert 'Startup query: "carbon capture"' in client.calls[0]["user_prompt"]


@pytest.mark.asyncio
async def test_model_match_follows_model_order_and_ignores_unknown_names():
    pool = [make_investor("Ana Ruiz"), make_investor("Ben Ode"), make_investor("Cy Lam")]
    client = StubChatClient(['{"matches": ["Cy Lam", "Someone Else", "Ana Ruiz", "cy lam"]}'])

    matched = await InvestorMatcher(client=client).match(pool, "anything")

    assert [investor.name for investor in matched] == ["Cy Lam", "Ana Ruiz"]


@pytest.mark.asyncio
async def test_model_failure_or_empty_answer_falls_back_to_keywords():
    pool = [make_investor("Ana Ruiz", interests=["SaaS"]), make_investor("Ben Ode")]
    failing = InvestorMatcher(client=StubChatClient(error=GenerativeSourceError("down", code="502_OPENAI_UPSTREAM")))
    silent = InvestorMatcher(client=StubChatClient(['{"matches": []}']))

    assert [investor.name for investor in await failing.match(pool, "saas")] == ["Ana Ruiz"]
    assert [investor.name for investor in await silent.match(pool, "saas")] == ["Ana Ruiz"]
    assert await silent.match([], "saas") == []


def test_keyword_scores_weight_names_above_interests():
    exact = make_investor("Grace Hopper")
    partial = make_investor("Grace Hopper Fund")
    tagged = make_investor("Someone Else", interests=["Grace Hopper Alumni"])

    assert score_investor(exact, "grace hopper") > score_investor(partial, "grace hopper")
    assert score_investor(partial, "grace hopper") > score_investor(tagged, "grace hopper")


def test_short_keywords_are_ignored():
    investor = make_investor("Ann Bo", bio="an angel in ai")

    assert match_investors_by_keywords([investor], "in an") == []


def test_query_key_normalizes():
    assert query_key(" Demo ") == "search:demo"
