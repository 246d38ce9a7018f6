from __future__ import annotations

import time
from dataclasses import asdict
from typing import Mapping, Optional
from uuid import uuid4

from loguru import logger

from deepreport.agents.gap_analyzer import GapAnalyzer
from deepreport.agents.gatherer import SourceGatherer
from deepreport.agents.planner import SearchPlanner, incorporate_clarifying_answers
from deepreport.agents.report_writer import ReportWriter
from deepreport.agents.scorer import RelevanceScorer, sort_by_relevance
from deepreport.agents.synthesizer import HierarchicalSynthesizer
from deepreport.config import ResearchConfig
from deepreport.intensity import ResearchIntensity, get_intensity_config
from deepreport.llm_client import CompletionClient
from deepreport.models.events import ProgressCallback, ResearchStep
from deepreport.models.research import ClarifyingQuestion, ReportMetadata, ResearchReport, Source
from deepreport.services import logger as log_service
from deepreport.services import streaming
from deepreport.services.cancellation import CancellationToken, ResearchCancelled
from deepreport.tools.search_provider import SearchClient


class ResearchOrchestrator:
    """Orchestrates the full research pipeline.

    Flow:
      1. Merge clarifying answers into the query and plan the searches
      2. Gather: concurrent search batches, read every new result
      3. Score relevance and sort
      4. Hierarchical synthesis, optionally repeated after gap-filling rounds
      5. Write the report (single-shot, or section by section with dedup)

    The run exclusively owns the source list and the seen-URL set; stages return new
    sources and this class merges them. Cancellation unwinds with ResearchCancelled
    and no partial report.
    """

    def __init__(
        self,
        completion: CompletionClient,
        search: SearchClient,
        config: ResearchConfig | None = None,
    ):
        self.completion = completion
        self.search = search
        self.config = config or ResearchConfig()
        self.profile = get_intensity_config(self.config.intensity)

    def update_config(self, config: ResearchConfig) -> None:
        self.config = config
        self.profile = get_intensity_config(config.intensity)

    async def generate_clarifying_questions(self, query: str) -> list[ClarifyingQuestion]:
        return await SearchPlanner(self.completion, self.config).generate_clarifying_questions(query)

    async def research(
        self,
        query: str,
        on_progress: ProgressCallback,
        cancel_token: Optional[CancellationToken] = None,
        clarifying_answers: Mapping[str, str] | None = None,
    ) -> ResearchReport:
        token = cancel_token or CancellationToken()
        run_id = str(uuid4())
        started = time.monotonic()

        def report_progress(step: ResearchStep) -> None:
            if not (step.data and "streamed_content" in step.data):
                log_service.log_research_step(run_id, step.type.value, "progress", step.to_dict())
            on_progress(step)

        try:
            return await self._run(query, report_progress, token, clarifying_answers, run_id, started)
        except ResearchCancelled:
            log_service.log_event("research_cancelled", "Research cancelled by caller", run_id=run_id)
            raise
        except Exception as e:
            log_service.log_research_step(run_id, "research", "failed", {"error": str(e)})
            raise

    async def _run(
        self,
        query: str,
        on_progress: ProgressCallback,
        token: CancellationToken,
        clarifying_answers: Mapping[str, str] | None,
        run_id: str,
        started: float,
    ) -> ResearchReport:
        config = self.config
        profile = self.profile
        stage_args = {"on_progress": on_progress, "cancel_token": token}
        planner = SearchPlanner(self.completion, config, **stage_args)
        gatherer = SourceGatherer(self.completion, self.search, config, **stage_args)
        scorer = RelevanceScorer(self.completion, config, **stage_args)
        synthesizer = HierarchicalSynthesizer(self.completion, config, **stage_args)
        gap_analyzer = GapAnalyzer(self.completion, config, **stage_args)
        writer = ReportWriter(self.completion, config, **stage_args)

        sources: list[Source] = []
        seen_urls: set[str] = set()
        total_searches = 0

        # Step 1: plan
        on_progress(
            streaming.planning(
                "Decomposing research query into sub-topics...", current=0, total=100, phase="Planning"
            )
        )
        refined_query = incorporate_clarifying_answers(query, clarifying_answers)
        plan = await planner.create_search_plan(refined_query)
        log_service.log_research_step(run_id, "planning", "completed", {"queries": len(plan)})
        token.raise_if_aborted()

        # Step 2: gather
        gathered = await gatherer.gather(plan, seen_urls, profile.max_sources)
        self._merge(sources, seen_urls, gathered.sources)
        total_searches += gathered.searches_run
        log_service.log_research_step(
            run_id, "gathering", "completed", {"sources": len(sources), "searches": total_searches}
        )
        token.raise_if_aborted()

        # Step 3: score
        on_progress(
            streaming.synthesizing(
                "Scoring source relevance...", current=0, total=len(sources), phase="Analyzing"
            )
        )
        await scorer.score(refined_query, sources)
        sources[:] = sort_by_relevance(sources)

        # Step 4: synthesize, with adaptive gap-filling
        synthesis = ""
        iteration = 1
        max_iterations = (
            max(1, min(config.max_research_iterations, profile.adaptive_iterations))
            if config.enable_adaptive_research
            else 1
        )
        while iteration <= max_iterations:
            token.raise_if_aborted()
            on_progress(
                streaming.synthesizing(
                    "Performing initial synthesis..."
                    if iteration == 1
                    else f"Iteration {iteration}/{max_iterations}: Re-synthesizing with new sources...",
                    current=iteration,
                    total=max_iterations,
                    phase=f"Synthesis (Iteration {iteration})",
                )
            )
            synthesis = await synthesizer.synthesize(refined_query, sources)
            log_service.log_research_step(
                run_id, "synthesis", "completed", {"iteration": iteration, "chars": len(synthesis)}
            )
            if not config.enable_adaptive_research or iteration >= max_iterations:
                break

            on_progress(
                streaming.synthesizing(
                    "Analyzing research for knowledge gaps...",
                    current=iteration,
                    total=max_iterations,
                    phase="Gap Analysis",
                )
            )
            gaps = await gap_analyzer.identify_knowledge_gaps(refined_query, synthesis, sources)
            if not gaps:
                on_progress(
                    streaming.synthesizing(
                        "Research is comprehensive - no significant gaps found.",
                        current=max_iterations,
                        total=max_iterations,
                        phase="Complete",
                    )
                )
                break

            on_progress(
                streaming.searching(
                    f"Found {len(gaps)} knowledge gaps. Searching for additional sources...",
                    current=iteration,
                    total=max_iterations,
                    phase="Gap-Filling",
                )
            )
            filled = await gatherer.gather_for_gaps(gaps, seen_urls)
            total_searches += filled.searches_run
            if not filled.sources:
                logger.info("Gap-filling found no new sources, stopping adaptive research")
                break

            await scorer.score(refined_query, filled.sources)
            self._merge(sources, seen_urls, filled.sources)
            sources[:] = sort_by_relevance(sources)
            log_service.log_research_step(
                run_id,
                "gap_filling",
                "completed",
                {"iteration": iteration, "gaps": len(gaps), "new_sources": len(filled.sources)},
            )
            iteration += 1

        token.raise_if_aborted()

        # Step 5: write; citation numbers are fixed by the source order from here on
        on_progress(
            streaming.writing(
                "Writing comprehensive research report...", current=90, total=100, phase="Writing Report"
            )
        )
        refined = refined_query if refined_query != query else None
        written = await writer.write_report(query, refined, synthesis, sources)

        duration = round(time.monotonic() - started)
        on_progress(
            streaming.complete(
                f"Research complete! Analyzed {len(sources)} sources in {iteration} iteration(s) "
                f"over {duration // 60}m {duration % 60}s",
                current=100,
                total=100,
                phase="Complete",
            )
        )
        log_service.log_event(
            "research_complete",
            f"Research finished for '{query[:80]}'",
            run_id=run_id,
            sources=len(sources),
            searches=total_searches,
            iterations=iteration,
            duration_s=duration,
            dedup=asdict(written.dedup) if written.dedup else None,
        )
        return ResearchReport(
            query=query,
            refined_query=refined,
            summary=written.summary,
            sections=tuple(written.sections),
            sources=tuple(sources),
            metadata=ReportMetadata(
                total_sources=len(sources),
                total_searches=total_searches,
                research_duration=duration,
                intensity=ResearchIntensity(config.intensity).value,
                iterations=iteration,
            ),
        )

    @staticmethod
    def _merge(sources: list[Source], seen_urls: set[str], new_sources: list[Source]) -> None:
        for source in new_sources:
            if source.url in seen_urls:
                continue
            seen_urls.add(source.url)
            sources.append(source)
