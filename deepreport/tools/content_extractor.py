from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from bs4 import BeautifulSoup
from loguru import logger

from deepreport.tools.web_utils import clip

BOILERPLATE_TAGS = ("script", "style", "nav", "header", "footer", "noscript", "aside")


@dataclass
class ExtractedContent:
    url: str
    title: str
    text: str
    method: str
    raw_length: int


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def _extract_title(soup: BeautifulSoup) -> str:
    title = soup.title.string if soup.title and soup.title.string else ""
    return _normalize_text(title)


def _looks_low_quality(text: str) -> bool:
    return len(text) < 200


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _parse_readabilipy_payload(payload: dict[str, Any]) -> str:
    plain_text = payload.get("plain_text")
    if isinstance(plain_text, list):
        chunks: list[str] = []
        for item in plain_text:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                chunks.append(item["text"])
        return _normalize_text(" ".join(chunks))
    if isinstance(plain_text, str):
        return _normalize_text(plain_text)
    return ""


def _extract_with_readabilipy(raw_html: str) -> str:
    from readabilipy import simple_json_from_html_string

    payload = simple_json_from_html_string(raw_html, use_readability=False)
    if not isinstance(payload, dict):
        return ""
    return _parse_readabilipy_payload(payload)


def _extract_with_soup(soup: BeautifulSoup) -> str:
    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()
    return _normalize_text(soup.get_text(" "))


def extract_main_content(url: str, raw_html: str, *, max_chars: int) -> ExtractedContent:
    """Plain-text body of an HTML page: trafilatura, then readabilipy, then tag stripping."""
    soup = BeautifulSoup(raw_html, "html.parser")
    title = _extract_title(soup)

    try:
        text = _extract_with_trafilatura(raw_html)
    except Exception as e:
        logger.debug(f"trafilatura failed for {url}: {e}")
        text = ""
    if text and not _looks_low_quality(text):
        return ExtractedContent(url, title, clip(text, max_chars), "trafilatura", len(raw_html))

    try:
        text = _extract_with_readabilipy(raw_html)
    except Exception as e:
        logger.debug(f"readabilipy failed for {url}: {e}")
        text = ""
    if text and not _looks_low_quality(text):
        return ExtractedContent(url, title, clip(text, max_chars), "readabilipy", len(raw_html))

    text = _extract_with_soup(soup)
    return ExtractedContent(url, title, clip(text, max_chars), "raw", len(raw_html))
