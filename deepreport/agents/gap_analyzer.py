from __future__ import annotations

from loguru import logger

from deepreport.agents.base import PipelineStage
from deepreport.models.research import KnowledgeGap, Source
from deepreport.services.parsing import ParseFailure, extract_json_array, normalize_text_list
from deepreport.tools.web_utils import clip

MIN_GAP_IMPORTANCE = 5
MAX_GAPS = 5


def parse_gaps(raw_text: str, queries_per_gap: int) -> list[KnowledgeGap]:
    """Validate the gap array: importance >= 5 only, at most five gaps, bounded queries."""
    parsed = extract_json_array(raw_text)
    if isinstance(parsed, ParseFailure):
        logger.warning(f"Failed to identify knowledge gaps: {parsed.reason}")
        return []

    gaps: list[KnowledgeGap] = []
    for index, item in enumerate(parsed.value):
        if not isinstance(item, dict):
            continue
        description = item.get("description")
        importance = item.get("importance")
        if not isinstance(description, str) or not description.strip():
            continue
        if isinstance(importance, bool) or not isinstance(importance, (int, float)):
            continue
        importance = int(round(importance))
        if importance < MIN_GAP_IMPORTANCE:
            continue
        raw_queries = item.get("suggestedQueries", item.get("suggested_queries"))
        gaps.append(
            KnowledgeGap(
                id=str(item.get("id") or f"gap{index + 1}"),
                description=description.strip(),
                importance=min(importance, 10),
                suggested_queries=normalize_text_list(raw_queries, max_items=max(queries_per_gap, 0)),
            )
        )
        if len(gaps) >= MAX_GAPS:
            break
    return gaps


class GapAnalyzer(PipelineStage):
    name = "gap_analyzer"

    async def identify_knowledge_gaps(
        self, query: str, synthesis: str, sources: list[Source]
    ) -> list[KnowledgeGap]:
        """Ask for at most five important gaps; any failure means no gaps."""
        source_list = "\n".join(
            f"[{i + 1}] {s.title}" for i, s in enumerate(sources[: self.config.gap_source_limit])
        )
        try:
            text = await self._chat_prompt(
                "gaps",
                "gaps.system",
                "gaps.user",
                query=query,
                source_count=len(sources),
                source_list=source_list,
                synthesis=clip(synthesis, self.config.synthesis_char_budget),
            )
        except Exception as e:
            logger.warning(f"Knowledge gap analysis failed: {e}")
            return []
        return parse_gaps(text, self.profile.gap_queries_per_iteration)
