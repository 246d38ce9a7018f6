from __future__ import annotations

import math
from typing import Any

from loguru import logger

from deepreport.agents.base import PipelineStage
from deepreport.models.research import Source
from deepreport.services.parsing import ParseFailure, extract_json_array

SCORE_BATCH_SIZE = 10
DEFAULT_SCORE = 5


def coerce_score(value: Any) -> int:
    """Map one model-supplied score onto an integer in [1, 10]; junk becomes the default."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_SCORE
    if isinstance(value, float) and not math.isfinite(value):
        return DEFAULT_SCORE
    return min(10, max(1, int(round(value))))


def sort_by_relevance(sources: list[Source]) -> list[Source]:
    """Descending by score; ties keep their prior relative order."""
    return sorted(sources, key=lambda s: s.relevance_score or 0, reverse=True)


class RelevanceScorer(PipelineStage):
    name = "scorer"

    async def score(self, query: str, sources: list[Source]) -> None:
        """Assign ``relevance_score`` to every source in place, one call per batch of 10."""
        for start in range(0, len(sources), SCORE_BATCH_SIZE):
            batch = sources[start : start + SCORE_BATCH_SIZE]
            descriptions = "\n\n".join(
                f"[{idx}] {s.title}\n{s.snippet or s.content[:200]}"
                for idx, s in enumerate(batch)
            )
            try:
                text = await self._chat_prompt(
                    "score", "scorer.system", "scorer.user", query=query, sources=descriptions
                )
            except Exception as e:
                logger.warning(f"Relevance scoring call failed, defaulting batch to {DEFAULT_SCORE}: {e}")
                text = ""

            parsed = extract_json_array(text)
            if isinstance(parsed, ParseFailure):
                if text:
                    logger.warning(f"Unparseable relevance scores ({parsed.reason}); defaulting batch")
                for source in batch:
                    source.relevance_score = DEFAULT_SCORE
                continue

            scores = parsed.value
            for idx, source in enumerate(batch):
                source.relevance_score = coerce_score(scores[idx]) if idx < len(scores) else DEFAULT_SCORE
