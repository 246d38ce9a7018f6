from __future__ import annotations

from deepreport.tools import content_extractor

HTML = "<html><head><title>Article</title></head><body><nav>Menu</nav><p>Body text</p><script>x()</script></body></html>"


def test_extract_main_content_uses_trafilatura_path(monkeypatch):
    monkeypatch.setattr(
        content_extractor,
        "_extract_with_trafilatura",
        lambda *_args, **_kwargs: " ".join(["Key evidence about grid storage timelines."] * 30),
    )
    monkeypatch.setattr(content_extractor, "_extract_with_readabilipy", lambda *_args, **_kwargs: "")

    result = content_extractor.extract_main_content("https://example.com/article", HTML, max_chars=1000)

    assert result.method == "trafilatura"
    assert result.title == "Article"
    assert "grid storage" in result.text
    assert len(result.text) <= 1000


def test_extract_main_content_falls_back_to_readabilipy(monkeypatch):
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda *_args, **_kwargs: "too short")
    monkeypatch.setattr(
        content_extractor,
        "_extract_with_readabilipy",
        lambda *_args, **_kwargs: " ".join(["Recovered article body with turbine details."] * 30),
    )

    result = content_extractor.extract_main_content("https://example.com/fallback", HTML, max_chars=5000)

    assert result.method == "readabilipy"
    assert "turbine details" in result.text


def test_extract_main_content_strips_boilerplate_as_last_resort(monkeypatch):
    def _boom(*_args, **_kwargs):
        raise RuntimeError("extractor crashed")

    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", _boom)
    monkeypatch.setattr(content_extractor, "_extract_with_readabilipy", lambda *_args, **_kwargs: "")

    result = content_extractor.extract_main_content("https://example.com/raw", HTML, max_chars=5000)

    assert result.method == "raw"
    assert "Body text" in result.text
    assert "Menu" not in result.text
    assert "x()" not in result.text
    assert result.raw_length == len(HTML)


def test_parse_readabilipy_payload_handles_plain_text_dicts():
    payload = {"plain_text": [{"text": "Line one"}, "Line two", {"other": 1}]}

    text = content_extractor._parse_readabilipy_payload(payload)

    assert text == "Line one Line two"
