"""Tests for knowledge gap identification."""
import json

import pytest

from deepreport.agents.gap_analyzer import GapAnalyzer, parse_gaps
from deepreport.config import ResearchConfig
from deepreport.intensity import ResearchIntensity
from deepreport.models.research import Source


def _gap(i: int, importance, **extra) -> dict:
    return {"id": f"g{i}", "description": f"gap {i}", "importance": importance, **extra}


class TestParseGaps:
    def test_low_importance_gaps_are_dropped_and_count_capped(self):
        raw = json.dumps([_gap(i, 9 if i % 2 else 3) for i in range(14)])

        gaps = parse_gaps(raw, queries_per_gap=2)

        assert len(gaps) == 5
        assert all(g.importance >= 5 for g in gaps)

    def test_queries_are_normalized_and_truncated(self):
        raw = json.dumps([_gap(1, 7, suggestedQueries=["a  b", "A B", "c", "d"])])

        (gap,) = parse_gaps(raw, queries_per_gap=2)

        assert gap.suggested_queries == ["a b", "c"]

    def test_snake_case_queries_and_missing_ids(self):
        raw = json.dumps([{"description": "missing", "importance": 6.6, "suggested_queries": ["x"]}])

        (gap,) = parse_gaps(raw, queries_per_gap=3)

        assert gap.id == "gap1"
        assert gap.importance == 7
        assert gap.suggested_queries == ["x"]

    def test_malformed_items_are_skipped(self):
        raw = json.dumps(["text", {"description": "", "importance": 9}, {"description": "d", "importance": "9"}])
        assert parse_gaps(raw, queries_per_gap=2) == []
        assert parse_gaps("The research looks complete.", queries_per_gap=2) == []


class TestGapAnalyzer:
    @pytest.mark.asyncio
    async def test_source_list_capped_and_synthesis_clipped(self, fake_llm):
        fake_llm.route("gaps", "[]")
        config = ResearchConfig(intensity=ResearchIntensity.DEEP, synthesis_char_budget=50)
        sources = [Source(url=f"https://example.com/{i}", title=f"T{i}") for i in range(40)]

        gaps = await GapAnalyzer(fake_llm, config).identify_knowledge_gaps("q", "z" * 500, sources)

        assert gaps == []
        _, _, user = fake_llm.calls[0]
        assert "(40 total)" in user
        assert "[30] T29" in user
        assert "[31]" not in user
        assert "z" * 48 not in user

    @pytest.mark.asyncio
    async def test_call_failure_means_no_gaps(self, fake_llm, quick_config):
        fake_llm.route("gaps", RuntimeError("offline"))

        gaps = await GapAnalyzer(fake_llm, quick_config).identify_knowledge_gaps("q", "s", [])

        assert gaps == []
