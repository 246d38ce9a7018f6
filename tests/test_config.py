from __future__ import annotations

import pytest

from deepreport.config import DedupConfig, ResearchConfig, Settings
from deepreport.intensity import ResearchIntensity


def _settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


def test_defaults_need_no_environment():
    settings = _settings()
    assert settings.ai_provider == "ollama"
    assert settings.research_intensity == ResearchIntensity.STANDARD
    assert settings.report_detail == "detailed"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("RESEARCH_INTENSITY", "deep")
    monkeypatch.setenv("SEARCH_ENGINES", "google, bing,,duckduckgo")
    monkeypatch.setenv("ENABLE_ADAPTIVE_RESEARCH", "false")

    settings = _settings()

    assert settings.research_intensity == ResearchIntensity.DEEP
    assert settings.search_engine_list == ["google", "bing", "duckduckgo"]
    assert settings.enable_adaptive_research is False


@pytest.mark.parametrize(
    ("provider", "endpoint", "expected"),
    [
        ("lmstudio", "http://localhost:1234", "http://localhost:1234/v1"),
        ("lmstudio", "http://localhost:1234/v1/", "http://localhost:1234/v1"),
        ("ollama", "http://localhost:11434", "http://localhost:11434/v1"),
        ("openai-compatible", "https://api.example.com/v2", "https://api.example.com/v2"),
    ],
)
def test_endpoint_for_provider(provider, endpoint, expected):
    assert _settings(ai_provider=provider, ai_endpoint=endpoint).endpoint_for_provider() == expected


def test_research_config_carries_settings_and_overrides():
    settings = _settings(research_intensity="quick", max_research_iterations=2, report_detail=" Standard ")

    config = settings.research_config(enable_adaptive_research=False, report_detail=None)

    assert config.intensity == ResearchIntensity.QUICK
    assert config.max_research_iterations == 2
    assert config.report_detail == "standard"
    assert config.enable_adaptive_research is False
    assert config.dedup == DedupConfig()


def test_research_config_is_frozen():
    config = ResearchConfig()
    with pytest.raises(AttributeError):
        config.intensity = ResearchIntensity.DEEP
