from __future__ import annotations

from dataclasses import dataclass, field

from pydantic_settings import BaseSettings

from deepreport.intensity import ResearchIntensity


@dataclass(frozen=True)
class DedupConfig:
    """Thresholds for the cross-section sentence filter."""

    ngram_size: int = 4
    min_matches: int = 3
    min_ratio: float = 0.3
    min_section_chars: int = 50
    exempt_titles: tuple[str, ...] = ("methodology", "references")


@dataclass(frozen=True)
class ResearchConfig:
    """Per-run parameters handed to the orchestrator.

    The engine reads nothing else: no module-level settings, no environment.
    """

    intensity: ResearchIntensity = ResearchIntensity.STANDARD
    enable_adaptive_research: bool = True
    max_research_iterations: int = 3
    enable_streaming: bool = True
    report_detail: str = "detailed"  # standard | detailed | comprehensive
    synthesis_char_budget: int = 12000
    source_content_chars: int = 1500
    gap_source_limit: int = 30
    dedup: DedupConfig = field(default_factory=DedupConfig)


class Settings(BaseSettings):
    # Completion endpoint
    ai_provider: str = "ollama"  # lmstudio | ollama | openai-compatible
    ai_endpoint: str = "http://localhost:11434"
    ai_model: str = "llama3.2"
    ai_api_key: str = ""
    ai_timeout_seconds: float = 600.0

    # SearXNG
    searxng_url: str = "http://localhost:8080"
    search_max_results: int = 10
    search_engines: str = ""  # comma-separated engine names
    search_timeout_seconds: float = 30.0
    page_fetch_timeout_seconds: float = 20.0
    page_max_chars: int = 10000
    page_user_agent: str = "Local Deep Research Bot"

    # Research defaults
    research_intensity: ResearchIntensity = ResearchIntensity.STANDARD
    enable_clarifying_questions: bool = True
    enable_streaming: bool = True
    enable_adaptive_research: bool = True
    max_research_iterations: int = 3
    report_detail: str = "detailed"  # standard | detailed | comprehensive

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_to_file: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def search_engine_list(self) -> list[str]:
        return [e.strip() for e in self.search_engines.split(",") if e.strip()]

    def endpoint_for_provider(self) -> str:
        """Base URL for the OpenAI-compatible chat API of the configured provider."""
        endpoint = self.ai_endpoint.strip().rstrip("/")
        provider = self.ai_provider.lower().strip()
        if provider in ("lmstudio", "ollama"):
            return endpoint if endpoint.endswith("/v1") else f"{endpoint}/v1"
        return endpoint

    def research_config(self, **overrides) -> ResearchConfig:
        values = {
            "intensity": ResearchIntensity(self.research_intensity),
            "enable_adaptive_research": self.enable_adaptive_research,
            "max_research_iterations": self.max_research_iterations,
            "enable_streaming": self.enable_streaming,
            "report_detail": self.report_detail.lower().strip(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ResearchConfig(**values)


def load_settings() -> Settings:
    return Settings()
