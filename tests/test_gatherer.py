"""Tests for concurrent source gathering."""
import asyncio

import pytest

from deepreport.agents.gatherer import SourceGatherer
from deepreport.models.research import KnowledgeGap
from deepreport.services.cancellation import CancellationToken, ResearchCancelled
from deepreport.tools.search_provider import SearchResponse, SearchResult


class ReversedLatencySearch:
    """Earlier queries answer later, so completion order is the reverse of query order."""

    def __init__(self, queries: list[str]):
        self.delays = {q: 0.01 * (len(queries) - i) for i, q in enumerate(queries)}

    async def search(self, query: str) -> SearchResponse:
        await asyncio.sleep(self.delays.get(query, 0))
        return SearchResponse(
            query=query,
            results=[SearchResult(title=query, url=f"https://example.com/{query}", content="")],
        )

    async def fetch_page_content(self, url: str) -> str:
        return ""


class TestGather:
    @pytest.mark.asyncio
    async def test_capacity_and_per_search_limits(self, fake_llm, fake_search, quick_config):
        fake_search.results_per_query = 5
        gatherer = SourceGatherer(fake_llm, fake_search, quick_config)

        result = await gatherer.gather(["a", "b", "c", "d"], set(), capacity=7)

        assert len(result.sources) == 7
        # quick profile reads 3 results per search
        assert {s.url.rsplit("/", 1)[1] for s in result.sources} <= {"0", "1", "2"}
        assert result.searches_run == 4
        assert all(s.content.startswith("Full text of") for s in result.sources)

    @pytest.mark.asyncio
    async def test_results_follow_query_order_not_completion_order(self, fake_llm, quick_config):
        queries = ["first", "second"]
        gatherer = SourceGatherer(fake_llm, ReversedLatencySearch(queries), quick_config)

        result = await gatherer.gather(queries, set(), capacity=10)

        assert [s.title for s in result.sources] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_seen_urls_are_skipped(self, fake_llm, fake_search, quick_config):
        gatherer = SourceGatherer(fake_llm, fake_search, quick_config)
        seen = {"https://example.com/a/0"}

        result = await gatherer.gather(["a", "a"], seen, capacity=10)

        assert [s.url for s in result.sources] == ["https://example.com/a/1", "https://example.com/a/2"]
        assert seen == {"https://example.com/a/0"}

    @pytest.mark.asyncio
    async def test_failing_search_and_fetch_degrade(self, fake_llm, fake_search, quick_config):
        fake_search.fail = True
        gatherer = SourceGatherer(fake_llm, fake_search, quick_config)
        result = await gatherer.gather(["a", "b"], set(), capacity=10)
        assert result.sources == []
        assert result.searches_run == 2

        fake_search.fail = False
        fake_search.fetch_fail = True
        result = await gatherer.gather(["a"], set(), capacity=10)
        assert len(result.sources) == 3
        assert all(s.content == "" and s.text.startswith("Snippet") for s in result.sources)

    @pytest.mark.asyncio
    async def test_cancellation_checked_before_each_batch(self, fake_llm, fake_search, quick_config):
        token = CancellationToken()
        fake_search.on_search = lambda query: token.abort()
        gatherer = SourceGatherer(fake_llm, fake_search, quick_config, cancel_token=token)

        with pytest.raises(ResearchCancelled):
            await gatherer.gather(["a", "b", "c", "d"], set(), capacity=10)
        # quick profile runs two searches per batch; the second batch never starts
        assert fake_search.queries == ["a", "b"]


class TestGatherForGaps:
    @pytest.mark.asyncio
    async def test_gap_queries_read_up_to_three_results(self, fake_llm, fake_search, quick_config):
        fake_search.results_per_query = 6
        gatherer = SourceGatherer(fake_llm, fake_search, quick_config)
        gaps = [
            KnowledgeGap(id="gap1", description="costs", importance=8, suggested_queries=["x", "y", "z"]),
            KnowledgeGap(id="gap2", description="no queries", importance=6, suggested_queries=[]),
        ]

        result = await gatherer.gather_for_gaps(gaps, {"https://example.com/x/0"})

        # quick profile: 2 queries per gap
        assert fake_search.queries == ["x", "y"]
        assert result.searches_run == 2
        assert [s.url for s in result.sources] == [
            "https://example.com/x/1",
            "https://example.com/x/2",
            "https://example.com/y/0",
            "https://example.com/y/1",
            "https://example.com/y/2",
        ]
