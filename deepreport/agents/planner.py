from __future__ import annotations

import re
from typing import Mapping

from loguru import logger

from deepreport.agents.base import PipelineStage
from deepreport.errors import PlanningError
from deepreport.models.research import ClarifyingQuestion
from deepreport.services.parsing import ParseFailure, extract_json_array, normalize_text_list

NUMBERED_LINE = re.compile(r"^\d+[.)]")
BULLET_PREFIX = re.compile(r"^[-*•]\s+")


def parse_plan_lines(raw_text: str, limit: int) -> list[str]:
    """Split a one-query-per-line reply, dropping numbered lines and bullet/quote artifacts."""
    queries: list[str] = []
    for line in raw_text.splitlines():
        candidate = line.strip()
        if not candidate or NUMBERED_LINE.match(candidate):
            continue
        candidate = BULLET_PREFIX.sub("", candidate).strip().strip('"').strip()
        if candidate:
            queries.append(candidate)
    return queries[: max(limit, 0)]


def incorporate_clarifying_answers(query: str, answers: Mapping[str, str] | None) -> str:
    """Merge clarifying-question answers into the query text."""
    if not answers:
        return query
    context = ". ".join(a.strip() for a in answers.values() if a and a.strip())
    if not context:
        return query
    return f"{query}\n\nAdditional context: {context}"


class SearchPlanner(PipelineStage):
    """Decomposes a question into an ordered list of search queries."""

    name = "planner"

    async def create_search_plan(self, query: str) -> list[str]:
        """Return ``[query, *decompositions]`` with up to ``max_search_queries`` decompositions.

        The plan call is load-bearing: any failure aborts the run with PlanningError.
        """
        target = self.profile.max_search_queries
        try:
            text = await self._chat_prompt(
                "plan",
                "planner.system",
                "planner.user",
                system_values={"target_queries": target},
                query=query,
                target_queries=target,
            )
        except Exception as e:
            raise PlanningError(f"Failed to create search plan: {e}") from e

        seen = {query.strip().lower()}
        plan = [query]
        for candidate in parse_plan_lines(text, target):
            key = candidate.lower()
            if key in seen:
                continue
            seen.add(key)
            plan.append(candidate)
        logger.info(f"Search plan: {len(plan)} queries for '{query[:80]}'")
        return plan

    async def generate_clarifying_questions(self, query: str) -> list[ClarifyingQuestion]:
        try:
            text = await self._chat_prompt("clarify", "clarify.system", "clarify.user", query=query)
        except Exception as e:
            logger.warning(f"Clarifying question generation failed: {e}")
            return []

        parsed = extract_json_array(text)
        if isinstance(parsed, ParseFailure):
            logger.warning(f"Failed to parse clarifying questions: {parsed.reason}")
            return []

        questions: list[ClarifyingQuestion] = []
        for index, item in enumerate(parsed.value):
            if not isinstance(item, dict):
                continue
            question = item.get("question")
            if not isinstance(question, str) or not question.strip():
                continue
            qtype = item.get("type") if item.get("type") in ("text", "choice", "confirm") else "text"
            questions.append(
                ClarifyingQuestion(
                    id=str(item.get("id") or f"q{index + 1}"),
                    question=question.strip(),
                    type=qtype,
                    options=normalize_text_list(item.get("options"), max_items=4),
                )
            )
        return questions[:4]
