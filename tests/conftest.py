from __future__ import annotations

import re
from typing import Any, Callable, Union

import pytest

from deepreport.config import ResearchConfig
from deepreport.errors import SearchError
from deepreport.intensity import ResearchIntensity
from deepreport.llm_client import ChatResponse
from deepreport.tools.search_provider import SearchResult, SearchResponse

# Distinctive opening of each system prompt in prompts.json
PROMPT_MARKERS = {
    "plan": "You are a research planning assistant",
    "clarify": "You are a research assistant preparing",
    "score": "Rate the relevance",
    "summarize": "You are extracting evidence",
    "themes": "Organize the source material",
    "cross_theme": "You are performing cross-theme analysis",
    "final": "Create the final, authoritative",
    "gaps": "You are a research quality analyst",
    "single": "You are an expert research report writer",
    "outline": "You are planning the outline",
    "section": "You are writing one section",
    "registry": "You maintain a knowledge registry",
    "digest": "Compress the report section",
    "summary": "Write the Executive Summary",
}

Reply = Union[str, BaseException, Callable[[str, str], str]]


class FakeCompletionClient:
    """Scriptable completion endpoint; replies are chosen by the system prompt."""

    model = "fake-model"

    def __init__(self) -> None:
        self.routes: dict[str, Reply] = {}
        self.default: Reply = ""
        self.calls: list[tuple[str, str, str]] = []  # (route, system, user)

    def route(self, name: str, reply: Reply) -> "FakeCompletionClient":
        self.routes[name] = reply
        return self

    def _route_for(self, system: str) -> str:
        for name, marker in PROMPT_MARKERS.items():
            if system.startswith(marker):
                return name
        return "unknown"

    def calls_for(self, name: str) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[0] == name]

    async def chat(
        self,
        messages: list[dict[str, str]],
        on_stream_chunk=None,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatResponse:
        system = messages[0]["content"]
        user = messages[-1]["content"]
        name = self._route_for(system)
        self.calls.append((name, system, user))
        reply = self.routes.get(name, self.default)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(system, user)
        if on_stream_chunk is not None:
            for start in range(0, len(reply), 16):
                on_stream_chunk(reply[start : start + 16])
        return ChatResponse(content=reply)


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")[:40]


class FakeSearchClient:
    """Deterministic search backend: ``results_per_query`` hits per query."""

    def __init__(self) -> None:
        self.results_per_query = 3
        self.fail = False
        self.shared_urls = False  # every query returns the same URLs
        self.fetch_fail = False
        self.on_search: Callable[[str], Any] | None = None
        self.queries: list[str] = []
        self.fetched: list[str] = []

    def _url(self, query: str, index: int) -> str:
        if self.shared_urls:
            return f"https://example.com/shared/{index}"
        return f"https://example.com/{_slug(query)}/{index}"

    async def search(self, query: str) -> SearchResponse:
        self.queries.append(query)
        if self.on_search is not None:
            self.on_search(query)
        if self.fail:
            raise SearchError("search backend unavailable")
        results = [
            SearchResult(
                title=f"{query} result {i}",
                url=self._url(query, i),
                content=f"Snippet {i} about {query}",
            )
            for i in range(self.results_per_query)
        ]
        return SearchResponse(query=query, results=results)

    async def fetch_page_content(self, url: str) -> str:
        self.fetched.append(url)
        if self.fetch_fail:
            return ""
        return f"Full text of {url} with concrete figures."


SECTION_TITLE = re.compile(r"^SECTION: (.+)$", re.MULTILINE)


def section_body(system: str, user: str) -> str:
    match = SECTION_TITLE.search(user)
    title = match.group(1) if match else "Unknown"
    return (
        f"{title} shows measurable effects [1]. "
        f"Evidence on {title.lower()} comes from field reports [2]. "
        f"{title} cites an unknown study [99]."
    )


OUTLINE_JSON = (
    '[{"title": "Executive Summary", "goal": "Key findings"},'
    ' {"title": "Introduction", "goal": "Context"},'
    ' {"title": "Market Dynamics", "goal": "How the market moves"},'
    ' {"title": "Technical Foundations", "goal": "How it works"},'
    ' {"title": "Analysis & Discussion", "goal": "Interactions"},'
    ' {"title": "Recommendations", "goal": "Next steps"}]'
)


def script_pipeline(llm: FakeCompletionClient) -> FakeCompletionClient:
    """Happy-path replies for every stage of a full run."""
    llm.route("plan", "angle one\nangle two\nangle three")
    llm.route("clarify", '[{"id": "q1", "question": "Which region?", "type": "text"}]')
    llm.route("score", "[7, 9, 4, 8, 6, 7, 5, 8, 9, 3]")
    llm.route("summarize", "[Source 1] The first source reports a 12% rise. [Source 2] The second disagrees.")
    llm.route("themes", "Theme A: growth [Source 1]. Theme B: doubts [Source 2].")
    llm.route("cross_theme", "Growth and doubts interact through funding cycles [Source 1].")
    llm.route("final", "Final narrative of the research with citations [Source 1].")
    llm.route("gaps", "[]")
    llm.route("outline", OUTLINE_JSON)
    llm.route("section", section_body)
    llm.route("registry", "- 12% rise reported [1]")
    llm.route("digest", "- key point [1]")
    llm.route("summary", "Overall the evidence points to steady growth [1].")
    llm.route(
        "single",
        "Opening remarks about the topic.\n\n## Executive Summary\nGrowth is steady [1].\n\n## Findings\nDetails [Source 2] and [1, 2].",
    )
    return llm


@pytest.fixture
def fake_llm() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def scripted_llm() -> FakeCompletionClient:
    return script_pipeline(FakeCompletionClient())


@pytest.fixture
def fake_search() -> FakeSearchClient:
    return FakeSearchClient()


@pytest.fixture
def quick_config() -> ResearchConfig:
    return ResearchConfig(intensity=ResearchIntensity.QUICK, enable_streaming=False)


@pytest.fixture
def progress_log() -> list:
    return []
