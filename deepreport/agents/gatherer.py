from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AbstractSet, Optional

from loguru import logger

from deepreport.agents.base import PipelineStage
from deepreport.config import ResearchConfig
from deepreport.llm_client import CompletionClient
from deepreport.models.events import ProgressCallback
from deepreport.models.research import KnowledgeGap, Source
from deepreport.services import streaming
from deepreport.services.cancellation import CancellationToken
from deepreport.tools import web_utils
from deepreport.tools.search_provider import SearchClient, SearchResult

GAP_RESULTS_PER_QUERY = 3


@dataclass
class GatherResult:
    """Sources discovered by one gathering pass. The caller merges them into the run."""

    sources: list[Source] = field(default_factory=list)
    searches_run: int = 0


class SourceGatherer(PipelineStage):
    """Runs search queries in concurrent batches and reads every new result."""

    name = "gatherer"

    def __init__(
        self,
        completion: CompletionClient,
        search: SearchClient,
        config: ResearchConfig,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        super().__init__(completion, config, on_progress=on_progress, cancel_token=cancel_token)
        self.search = search

    async def _search_one(self, query: str) -> list[SearchResult]:
        try:
            response = await self.search.search(query)
        except Exception as e:
            logger.warning(f"Search failed for '{query[:80]}': {e}")
            return []
        return list(getattr(response, "results", None) or [])

    async def _search_batch(self, queries: list[str]) -> list[list[SearchResult]]:
        """Issue queries concurrently; results come back in query order, failures as []."""
        return list(await asyncio.gather(*(self._search_one(q) for q in queries)))

    async def _fetch_one(self, url: str) -> str:
        try:
            return await self.search.fetch_page_content(url) or ""
        except Exception as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            return ""

    async def _read(self, candidates: list[SearchResult]) -> list[Source]:
        contents = await asyncio.gather(*(self._fetch_one(c.url) for c in candidates))
        return [
            Source(url=c.url, title=c.title, snippet=c.content or "", content=text)
            for c, text in zip(candidates, contents)
        ]

    async def gather(
        self,
        queries: list[str],
        seen_urls: AbstractSet[str],
        capacity: int,
    ) -> GatherResult:
        """Initial gathering over the search plan.

        Stops when the plan (capped at ``max_search_queries``) is exhausted or
        ``capacity`` new sources were collected. Cancellation is checked before
        every batch.
        """
        profile = self.profile
        total_queries = min(len(queries), profile.max_search_queries)
        batch_size = max(profile.parallel_searches, 1)
        result = GatherResult()
        local_seen: set[str] = set()

        for batch_start in range(0, total_queries, batch_size):
            self._checkpoint()
            if len(result.sources) >= capacity:
                break

            batch_queries = queries[batch_start : min(batch_start + batch_size, total_queries)]
            self._emit(
                streaming.searching(
                    f"Searching batch {batch_start // batch_size + 1}...",
                    current=batch_start,
                    total=total_queries,
                    phase="Searching",
                )
            )
            batch_results = await self._search_batch(batch_queries)
            result.searches_run += len(batch_queries)

            candidates: list[SearchResult] = []
            for search_results in batch_results:
                for sr in search_results[: profile.sources_per_search]:
                    if len(result.sources) + len(candidates) >= capacity:
                        break
                    if not web_utils.is_valid_url(sr.url):
                        continue
                    if sr.url in seen_urls or sr.url in local_seen:
                        continue
                    local_seen.add(sr.url)
                    candidates.append(sr)
                    self._emit(
                        streaming.reading(
                            f"Reading: {sr.title[:60]}...",
                            current=len(result.sources) + len(candidates),
                            total=profile.max_sources,
                            phase="Reading Sources",
                        )
                    )
            result.sources.extend(await self._read(candidates))

        logger.info(
            f"Gathered {len(result.sources)} sources from {result.searches_run} searches"
        )
        return result

    async def gather_for_gaps(
        self,
        gaps: list[KnowledgeGap],
        seen_urls: AbstractSet[str],
    ) -> GatherResult:
        """Search each gap's suggested queries and read results not seen in this run."""
        per_gap = self.profile.gap_queries_per_iteration
        result = GatherResult()
        local_seen: set[str] = set()

        for gap_index, gap in enumerate(gaps):
            self._checkpoint()
            queries = gap.suggested_queries[:per_gap]
            if not queries:
                continue
            self._emit(
                streaming.searching(
                    f"Filling gap: {gap.description[:50]}...",
                    current=gap_index + 1,
                    total=len(gaps),
                    phase="Gap-Filling Search",
                )
            )
            batch_results = await self._search_batch(queries)
            result.searches_run += len(queries)

            candidates: list[SearchResult] = []
            for search_results in batch_results:
                for sr in search_results[:GAP_RESULTS_PER_QUERY]:
                    if not web_utils.is_valid_url(sr.url):
                        continue
                    if sr.url in seen_urls or sr.url in local_seen:
                        continue
                    local_seen.add(sr.url)
                    candidates.append(sr)
                    self._emit(
                        streaming.reading(
                            f"Reading: {sr.title[:50]}...",
                            current=len(result.sources) + len(candidates),
                            total=len(gaps) * per_gap * GAP_RESULTS_PER_QUERY,
                            phase="Reading Gap Sources",
                        )
                    )
            result.sources.extend(await self._read(candidates))

        return result
