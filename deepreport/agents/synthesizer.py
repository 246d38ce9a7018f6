from __future__ import annotations

from loguru import logger

from deepreport.agents.base import PipelineStage
from deepreport.models.research import Source
from deepreport.services import streaming
from deepreport.tools.web_utils import clip

SUMMARY_SEPARATOR = "\n\n"


def join_within_budget(parts: list[str], budget: int, separator: str = SUMMARY_SEPARATOR) -> str:
    """Concatenate oldest-first without exceeding ``budget`` characters.

    The part that crosses the budget is clipped with an ellipsis and every later
    part is dropped.
    """
    kept: list[str] = []
    used = 0
    for part in parts:
        sep_len = len(separator) if kept else 0
        if used + sep_len + len(part) <= budget:
            kept.append(part)
            used += sep_len + len(part)
            continue
        remaining = budget - used - sep_len
        if remaining > 3:
            kept.append(clip(part, remaining))
        break
    return separator.join(kept)


class HierarchicalSynthesizer(PipelineStage):
    """Up to four levels: per-source summaries, themes, cross-theme analysis, final narrative.

    Levels beyond the profile's ``synthesis_levels`` are skipped and the last enabled
    level's output is the synthesis. Each level boundary is a cancellation checkpoint.
    """

    name = "synthesizer"

    async def synthesize(self, query: str, sources: list[Source]) -> str:
        levels = self.profile.synthesis_levels
        budget = self.config.synthesis_char_budget

        self._checkpoint()
        self._emit(
            streaming.synthesizing(
                "Extracting key information from sources...",
                current=0,
                total=levels,
                phase="Synthesis Level 1",
            )
        )
        summaries = await self.summarize_sources(query, sources)
        self._checkpoint()
        if levels < 2:
            return SUMMARY_SEPARATOR.join(summaries)

        self._emit(
            streaming.synthesizing(
                "Synthesizing themes and patterns...",
                current=1,
                total=levels,
                phase="Synthesis Level 2",
            )
        )
        themes = await self._chat_prompt(
            "themes",
            "synthesis.theme_system",
            "synthesis.theme_user",
            query=query,
            summaries=join_within_budget(summaries, budget),
        )
        self._checkpoint()
        if levels < 3:
            return themes

        self._emit(
            streaming.synthesizing(
                "Analyzing cross-theme connections...",
                current=2,
                total=levels,
                phase="Synthesis Level 3",
            )
        )
        analysis = await self._chat_prompt(
            "cross_theme",
            "synthesis.cross_theme_system",
            "synthesis.cross_theme_user",
            query=query,
            themes=clip(themes, budget),
        )
        self._checkpoint()
        if levels < 4:
            return analysis

        self._emit(
            streaming.synthesizing(
                "Creating comprehensive synthesis...",
                current=3,
                total=levels,
                phase="Synthesis Level 4",
            )
        )
        final = await self._chat_prompt(
            "final",
            "synthesis.final_system",
            "synthesis.final_user",
            system_values={"source_count": len(sources)},
            query=query,
            analysis=clip(analysis, budget),
        )
        self._checkpoint()
        return final

    async def summarize_sources(self, query: str, sources: list[Source]) -> list[str]:
        """One summary per batch; ``[Source N]`` numbering follows the current source order."""
        batch_size = max(self.profile.summary_batch_size, 1)
        max_chars = self.config.source_content_chars
        summaries: list[str] = []
        for start in range(0, len(sources), batch_size):
            batch = sources[start : start + batch_size]
            source_texts = "\n\n---\n\n".join(
                f"[Source {start + idx + 1}: {s.title}]\n{s.text[:max_chars]}"
                for idx, s in enumerate(batch)
            )
            summaries.append(
                await self._chat_prompt(
                    "summarize",
                    "synthesis.summarize_system",
                    "synthesis.summarize_user",
                    query=query,
                    sources=source_texts,
                )
            )
        logger.debug(f"Summarized {len(sources)} sources in {len(summaries)} batches")
        return summaries
