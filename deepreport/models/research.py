from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Source(BaseModel):
    """One fetched web document. ``url`` is unique within a research run."""

    url: str
    title: str = ""
    snippet: str = ""  # excerpt from the search result
    content: str = ""  # fetched page text; empty when the fetch failed
    relevance_score: Optional[int] = None  # 1-10 once scored
    fetched_at: datetime = Field(default_factory=_utcnow)

    @property
    def text(self) -> str:
        """Best available body for prompts: fetched content, else the search snippet."""
        return self.content or self.snippet


class KnowledgeGap(BaseModel):
    """A deficiency in the current synthesis; lives for a single gap-filling round."""

    id: str
    description: str
    importance: int  # 1-10, only >= 5 survive filtering
    suggested_queries: list[str] = []


class ClarifyingQuestion(BaseModel):
    id: str
    question: str
    type: Literal["text", "choice", "confirm"] = "text"
    options: list[str] = []
    answer: Optional[str] = None


@dataclass(frozen=True)
class Pending:
    """Marks a section whose content is written after every other section."""


@dataclass(frozen=True)
class Ready:
    content: str


SectionBody = Union[Pending, Ready]


@dataclass
class SectionDraft:
    """A planned report section while the report is being assembled."""

    title: str
    goal: str = ""
    body: SectionBody = Ready("")

    @property
    def is_pending(self) -> bool:
        return isinstance(self.body, Pending)

    @property
    def content(self) -> str:
        return self.body.content if isinstance(self.body, Ready) else ""


class ReportSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    content: str  # markdown with [N] markers resolving to sources[N-1]


class ReportMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_sources: int
    total_searches: int
    research_duration: int  # seconds, wall clock
    intensity: str
    iterations: int = 1


class ResearchReport(BaseModel):
    """Terminal artifact of a run. Source order is the citation numbering (1-based)."""

    model_config = ConfigDict(frozen=True)

    query: str
    refined_query: Optional[str] = None
    summary: str = ""
    sections: tuple[ReportSection, ...] = ()
    sources: tuple[Source, ...] = ()
    metadata: ReportMetadata
    generated_at: datetime = Field(default_factory=_utcnow)

    def section(self, title: str) -> Optional[ReportSection]:
        lowered = title.lower()
        for section in self.sections:
            if section.title.lower() == lowered:
                return section
        return None
