"""Intensity profiles: named bundles of breadth/depth/cost limits."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ResearchIntensity(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"
    COMPREHENSIVE = "comprehensive"
    EXHAUSTIVE = "exhaustive"


@dataclass(frozen=True)
class IntensityConfig:
    max_sources: int
    max_search_queries: int
    parallel_searches: int
    sources_per_search: int
    synthesis_levels: int
    estimated_minutes: tuple[int, int]
    adaptive_iterations: int  # default iteration cap for adaptive mode
    gap_queries_per_iteration: int  # searches per gap in one gap-filling round
    summary_batch_size: int  # sources per level-1 summary call


INTENSITY_CONFIGS: dict[ResearchIntensity, IntensityConfig] = {
    ResearchIntensity.QUICK: IntensityConfig(
        max_sources=10,
        max_search_queries=5,
        parallel_searches=2,
        sources_per_search=3,
        synthesis_levels=1,
        estimated_minutes=(2, 5),
        adaptive_iterations=1,
        gap_queries_per_iteration=2,
        summary_batch_size=5,
    ),
    ResearchIntensity.STANDARD: IntensityConfig(
        max_sources=25,
        max_search_queries=10,
        parallel_searches=3,
        sources_per_search=5,
        synthesis_levels=2,
        estimated_minutes=(5, 15),
        adaptive_iterations=2,
        gap_queries_per_iteration=3,
        summary_batch_size=4,
    ),
    ResearchIntensity.DEEP: IntensityConfig(
        max_sources=50,
        max_search_queries=20,
        parallel_searches=4,
        sources_per_search=5,
        synthesis_levels=3,
        estimated_minutes=(15, 25),
        adaptive_iterations=3,
        gap_queries_per_iteration=4,
        summary_batch_size=3,
    ),
    ResearchIntensity.COMPREHENSIVE: IntensityConfig(
        max_sources=100,
        max_search_queries=35,
        parallel_searches=5,
        sources_per_search=6,
        synthesis_levels=4,
        estimated_minutes=(30, 50),
        adaptive_iterations=3,
        gap_queries_per_iteration=5,
        summary_batch_size=3,
    ),
    ResearchIntensity.EXHAUSTIVE: IntensityConfig(
        max_sources=200,
        max_search_queries=50,
        parallel_searches=5,
        sources_per_search=8,
        synthesis_levels=4,
        estimated_minutes=(45, 90),
        adaptive_iterations=4,
        gap_queries_per_iteration=6,
        summary_batch_size=3,
    ),
}


def get_intensity_config(intensity: ResearchIntensity | str) -> IntensityConfig:
    try:
        level = ResearchIntensity(intensity)
    except ValueError:
        raise ValueError(f"Unknown research intensity: {intensity!r}") from None
    return INTENSITY_CONFIGS[level]
