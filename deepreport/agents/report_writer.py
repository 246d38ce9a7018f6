from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from loguru import logger

from deepreport.agents.base import PipelineStage
from deepreport.llm_client import StreamCallback
from deepreport.models.research import Pending, Ready, ReportSection, SectionDraft, Source
from deepreport.services import streaming
from deepreport.services.dedup import DedupStats, dedupe_sections
from deepreport.services.parsing import ParseFailure, ParseResult, Parsed, extract_json_array
from deepreport.tools.web_utils import clip, clip_tail

EXECUTIVE_SUMMARY = "Executive Summary"
CROSS_CUTTING = "Cross-Cutting Analysis"
RECOMMENDATIONS = "Recommendations"
REFERENCES = "References"
OVERVIEW = "Overview"

MIN_OUTLINE_SECTIONS = 3
MAX_OUTLINE_SECTIONS = 12
PRIOR_SECTIONS_CHARS = 6000
DIGEST_INPUT_CHARS = 4000
DIGEST_FALLBACK_CHARS = 400
SINGLE_SHOT_SUMMARY_CHARS = 500

BANNED_TITLES = frozenset(
    {
        "introduction",
        "background",
        "conclusion",
        "conclusions",
        "references",
        "sources",
        "bibliography",
        "summary and conclusions",
    }
)

# Exact lowercase matches only; model phrasing outside this table passes through as-is.
TITLE_ALIASES = {
    "analysis & discussion": CROSS_CUTTING,
    "analysis and discussion": CROSS_CUTTING,
    "discussion": CROSS_CUTTING,
    "cross-theme analysis": CROSS_CUTTING,
    "summary": EXECUTIVE_SUMMARY,
    "key findings": EXECUTIVE_SUMMARY,
    "overview": EXECUTIVE_SUMMARY,
    "conclusions & recommendations": RECOMMENDATIONS,
    "conclusions and recommendations": RECOMMENDATIONS,
    "recommendations & next steps": RECOMMENDATIONS,
}

ANALYTICAL_TITLES = frozenset({CROSS_CUTTING.lower(), RECOMMENDATIONS.lower()})
MANDATORY_TITLES = frozenset({EXECUTIVE_SUMMARY.lower(), CROSS_CUTTING.lower(), RECOMMENDATIONS.lower()})

FALLBACK_OUTLINE = (
    (EXECUTIVE_SUMMARY, "State the most important findings and their implications."),
    ("Main Findings", "Present the principal evidence gathered on the research question."),
    ("Detailed Analysis", "Examine the mechanisms, figures and specific cases behind the findings."),
    (CROSS_CUTTING, "Analyze how the themes interact, reinforce or contradict each other."),
    ("Limitations & Gaps", "Identify what the evidence does not cover and where sources disagree."),
    (RECOMMENDATIONS, "Give concrete, forward-looking next steps."),
)

HEADER_LINE = re.compile(r"^#{1,3}\s+(.+)")
TITLE_NUMBERING = re.compile(r"^\s*(?:#+\s*)?(?:\d+[.)]\s*)?")
SOURCE_MARKER = re.compile(r"\[Source\s+(\d+)(?:\s*:[^\]\n]*)?\]", re.IGNORECASE)
GROUPED_MARKER = re.compile(r"\[(\d+(?:\s*[,;]\s*\d+)+)\]")
CITATION_MARKER = re.compile(r"( ?)\[(\d+)\]")


@dataclass
class WrittenReport:
    summary: str
    sections: list[ReportSection] = field(default_factory=list)
    dedup: Optional[DedupStats] = None


def format_source_list(sources: list[Source]) -> str:
    return "\n".join(
        f"[{i + 1}] {s.title or s.url} (relevance: {s.relevance_score or '-'}/10): {s.url}"
        for i, s in enumerate(sources)
    )


def format_references(sources: list[Source]) -> str:
    return "\n".join(f"[{i + 1}] {s.title or s.url} - {s.url}" for i, s in enumerate(sources))


def normalize_citations(text: str, source_count: int) -> str:
    """Rewrite citation markers to ``[N]`` and drop any that do not resolve to a source."""
    text = SOURCE_MARKER.sub(lambda m: f"[{m.group(1)}]", text)
    text = GROUPED_MARKER.sub(
        lambda m: "".join(f"[{n.strip()}]" for n in re.split(r"[,;]", m.group(1))), text
    )

    def _check(match: re.Match) -> str:
        return match.group(0) if 1 <= int(match.group(2)) <= source_count else ""

    return CITATION_MARKER.sub(_check, text)


def parse_report_sections(content: str) -> list[ReportSection]:
    """Split markdown on ``#``/``##``/``###`` headers; text before the first header is the Overview."""
    sections: list[ReportSection] = []
    title = OVERVIEW
    lines: list[str] = []
    for line in content.split("\n"):
        match = HEADER_LINE.match(line)
        if match:
            if lines and "\n".join(lines).strip():
                sections.append(ReportSection(title=title, content="\n".join(lines).strip()))
            title = match.group(1).strip()
            lines = []
        else:
            lines.append(line)
    if lines and "\n".join(lines).strip():
        sections.append(ReportSection(title=title, content="\n".join(lines).strip()))
    return sections


def parse_outline(raw_text: str) -> ParseResult[list[tuple[str, str]]]:
    parsed = extract_json_array(raw_text)
    if isinstance(parsed, ParseFailure):
        return parsed
    entries: list[tuple[str, str]] = []
    for item in parsed.value:
        if isinstance(item, str):
            entries.append((item, ""))
        elif isinstance(item, dict) and isinstance(item.get("title"), str):
            goal = item.get("goal")
            entries.append((item["title"], goal if isinstance(goal, str) else ""))
    if not entries:
        return ParseFailure("outline has no usable sections", raw_text[:200])
    return Parsed(entries)


def _clean_title(title: str) -> str:
    return TITLE_NUMBERING.sub("", title).strip().strip("*").strip()


def sanitize_outline(entries: list[tuple[str, str]]) -> list[SectionDraft]:
    """Drop banned titles, fold aliases, dedupe, then guarantee the mandatory sections.

    The Executive Summary comes back ``Pending``; it is written after every other section.
    """
    drafts: list[SectionDraft] = []
    seen: set[str] = set()
    for raw_title, goal in entries:
        title = _clean_title(raw_title)
        key = title.lower()
        if not title or key in BANNED_TITLES:
            continue
        title = TITLE_ALIASES.get(key, title)
        key = title.lower()
        if key in seen:
            continue
        seen.add(key)
        drafts.append(SectionDraft(title=title, goal=goal.strip()))

    if len(drafts) < MIN_OUTLINE_SECTIONS:
        logger.warning(f"Outline kept only {len(drafts)} sections, using fallback outline")
        drafts = [SectionDraft(title=t, goal=g) for t, g in FALLBACK_OUTLINE]

    goals = dict(FALLBACK_OUTLINE)
    titles = {d.title.lower() for d in drafts}
    if EXECUTIVE_SUMMARY.lower() not in titles:
        drafts.insert(0, SectionDraft(title=EXECUTIVE_SUMMARY, goal=goals[EXECUTIVE_SUMMARY]))
    if RECOMMENDATIONS.lower() not in titles:
        drafts.append(SectionDraft(title=RECOMMENDATIONS, goal=goals[RECOMMENDATIONS]))
    if CROSS_CUTTING.lower() not in titles:
        at = next(i for i, d in enumerate(drafts) if d.title.lower() == RECOMMENDATIONS.lower())
        drafts.insert(at, SectionDraft(title=CROSS_CUTTING, goal=goals[CROSS_CUTTING]))

    while len(drafts) > MAX_OUTLINE_SECTIONS:
        # drop the last optional section
        for i in range(len(drafts) - 1, -1, -1):
            if drafts[i].title.lower() not in MANDATORY_TITLES:
                del drafts[i]
                break

    for draft in drafts:
        draft.body = Pending() if draft.title.lower() == EXECUTIVE_SUMMARY.lower() else Ready("")
    return drafts


class ReportWriter(PipelineStage):
    """Turns the final synthesis into report sections.

    ``standard`` detail makes one single-shot call. Higher detail levels plan an outline
    and write it section by section, each section seeing what earlier sections already
    stated, then run the dedup post-processor and write the Executive Summary last.
    """

    name = "report_writer"

    async def write_report(
        self,
        query: str,
        refined_query: str | None,
        synthesis: str,
        sources: list[Source],
    ) -> WrittenReport:
        if self.config.report_detail == "standard":
            return await self.write_single_shot(query, refined_query, synthesis, sources)
        return await self.write_by_section(refined_query or query, synthesis, sources)

    def _stream_handler(self, message: str, section: str | None = None) -> Optional[StreamCallback]:
        if not self.config.enable_streaming:
            return None
        streamed = ""

        def on_chunk(chunk: str) -> None:
            nonlocal streamed
            streamed += chunk
            data: dict[str, Any] = {"streamed_content": streamed}
            if section is not None:
                data["section"] = section
            self._emit(streaming.writing(message, current=85, total=100, phase="Writing Report", data=data))

        return on_chunk

    async def write_single_shot(
        self,
        query: str,
        refined_query: str | None,
        synthesis: str,
        sources: list[Source],
    ) -> WrittenReport:
        self._checkpoint()
        self._emit(streaming.writing("Generating comprehensive report...", current=80, total=100, phase="Writing Report"))
        refined_block = f"\nRefined Query: {refined_query}" if refined_query and refined_query != query else ""
        text = await self._chat_prompt(
            "single_shot",
            "report.single_system",
            "report.single_user",
            system_values={"source_count": len(sources)},
            on_stream_chunk=self._stream_handler("Writing report..."),
            query=query,
            refined_block=refined_block,
            synthesis=clip(synthesis, self.config.synthesis_char_budget),
            source_count=len(sources),
            source_list=format_source_list(sources),
        )
        sections = [
            ReportSection(title=s.title, content=normalize_citations(s.content, len(sources)))
            for s in parse_report_sections(text)
        ]
        summary = sections[0].content if sections else normalize_citations(clip(text, SINGLE_SHOT_SUMMARY_CHARS), len(sources))
        return WrittenReport(summary=summary, sections=sections)

    async def plan_outline(self, query: str, synthesis: str, source_count: int) -> list[SectionDraft]:
        try:
            text = await self._chat_prompt(
                "outline",
                "report.outline_system",
                "report.outline_user",
                query=query,
                synthesis=clip(synthesis, self.config.synthesis_char_budget),
                source_count=source_count,
            )
        except Exception as e:
            logger.warning(f"Outline planning failed, using fallback outline: {e}")
            return sanitize_outline([])
        parsed = parse_outline(text)
        if isinstance(parsed, ParseFailure):
            logger.warning(f"Unparseable outline ({parsed.reason}), using fallback outline")
            return sanitize_outline([])
        return sanitize_outline(parsed.value)

    async def build_registry(self, written: list[SectionDraft]) -> str:
        """Bullet list of facts already stated; empty when nothing is written yet or the call fails."""
        if not written:
            return ""
        prior_text = "\n\n".join(f"## {d.title}\n{d.content}" for d in written)
        try:
            return (
                await self._chat_prompt(
                    "registry",
                    "report.registry_system",
                    "report.registry_user",
                    prior_text=clip(prior_text, self.config.synthesis_char_budget),
                )
            ).strip()
        except Exception as e:
            logger.warning(f"Knowledge registry call failed, continuing without it: {e}")
            return ""

    async def digest_section(self, draft: SectionDraft) -> str:
        try:
            digest = await self._chat_prompt(
                "digest",
                "report.digest_system",
                "report.digest_user",
                title=draft.title,
                content=clip(draft.content, DIGEST_INPUT_CHARS),
            )
        except Exception as e:
            logger.warning(f"Digest of '{draft.title}' failed, using raw text: {e}")
            digest = ""
        return digest.strip() or clip(draft.content, DIGEST_FALLBACK_CHARS)

    async def _write_section(
        self,
        query: str,
        draft: SectionDraft,
        synthesis: str,
        source_list: str,
        written: list[SectionDraft],
        digests: dict[str, str],
    ) -> str:
        common = {
            "query": query,
            "title": draft.title,
            "goal": draft.goal or "Cover this topic in depth.",
            "synthesis": synthesis,
            "source_list": source_list,
        }
        on_chunk = self._stream_handler(f"Writing section: {draft.title}", section=draft.title)

        if draft.title.lower() in ANALYTICAL_TITLES:
            for prior in written:
                if prior.title not in digests:
                    digests[prior.title] = await self.digest_section(prior)
            digest = "\n\n".join(f"{d.title}:\n{digests[d.title]}" for d in written)
            return await self._chat_prompt(
                "section",
                "report.section_system",
                "report.analytical_section_user",
                on_stream_chunk=on_chunk,
                digest=digest or "(no previous sections)",
                **common,
            )

        registry = await self.build_registry(written)
        prior_sections = "\n\n".join(f"## {d.title}\n{d.content}" for d in written)
        return await self._chat_prompt(
            "section",
            "report.section_system",
            "report.section_user",
            on_stream_chunk=on_chunk,
            registry=registry or "(none)",
            prior_sections=clip_tail(prior_sections, PRIOR_SECTIONS_CHARS) or "(none)",
            **common,
        )

    async def write_summary(self, query: str, drafts: list[SectionDraft]) -> str:
        report_text = "\n\n".join(
            f"## {d.title}\n{d.content}"
            for d in drafts
            if not d.is_pending and d.title != REFERENCES and d.content
        )
        return await self._chat_prompt(
            "summary",
            "report.summary_system",
            "report.summary_user",
            on_stream_chunk=self._stream_handler("Writing executive summary...", section=EXECUTIVE_SUMMARY),
            query=query,
            report_text=clip(report_text, self.config.synthesis_char_budget),
        )

    async def write_by_section(self, query: str, synthesis: str, sources: list[Source]) -> WrittenReport:
        self._checkpoint()
        self._emit(streaming.writing("Planning report outline...", current=0, total=1, phase="Planning Outline"))
        drafts = await self.plan_outline(query, synthesis, len(sources))

        clipped = clip(synthesis, self.config.synthesis_char_budget)
        source_list = format_source_list(sources)
        written: list[SectionDraft] = []
        digests: dict[str, str] = {}
        for index, draft in enumerate(drafts):
            if draft.is_pending:
                continue
            self._checkpoint()
            self._emit(
                streaming.writing(
                    f"Writing section: {draft.title}",
                    current=index + 1,
                    total=len(drafts),
                    phase="Writing Sections",
                )
            )
            content = await self._write_section(query, draft, clipped, source_list, written, digests)
            draft.body = Ready(normalize_citations(content.strip(), len(sources)))
            written.append(draft)

        drafts.append(SectionDraft(title=REFERENCES, body=Ready(format_references(sources))))
        drafts, stats = dedupe_sections(drafts, self.config.dedup)

        self._checkpoint()
        self._emit(
            streaming.writing(
                "Writing executive summary...",
                current=len(drafts),
                total=len(drafts),
                phase="Writing Sections",
            )
        )
        summary = normalize_citations((await self.write_summary(query, drafts)).strip(), len(sources))
        drafts = [replace(d, body=Ready(summary)) if d.is_pending else d for d in drafts]

        logger.info(f"Report written: {len(drafts)} sections, {stats.sentences_removed} repeated sentences removed")
        return WrittenReport(
            summary=summary,
            sections=[ReportSection(title=d.title, content=d.content) for d in drafts],
            dedup=stats,
        )
