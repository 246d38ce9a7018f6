"""Deterministic cross-section repetition filter.

Sentences are compared through their normalized word 4-grams against one global set
of grams already kept earlier in the report. A sentence is dropped only when both
thresholds hold: enough matching grams *and* a large enough share of its own grams.
Raw counts alone over-trigger on long sentences with incidental overlap.

The sentence splitter is a regex heuristic, not a tokenizer.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable

from loguru import logger

from deepreport.config import DedupConfig
from deepreport.models.research import Ready, SectionDraft

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+(?=[A-Z\[(\"'“‘])")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
LIST_PREFIX = re.compile(r"^(\s*(?:[-*+•]|\d+[.)])\s+)")
CITATION_MARKER = re.compile(r"\[(?:Source\s+)?\d+(?:\s*,\s*\d+)*\]", re.IGNORECASE)
TOKEN = re.compile(r"[a-z0-9]+")
HAS_DIGIT = re.compile(r"\d")
BACK_REFERENCE = re.compile(
    r"^\s*as\s+(?:(?:was\s+)?(?:noted|mentioned|discussed|described|stated|shown|outlined|highlighted)"
    r"(?:\s+(?:above|earlier|previously|before))?"
    r"|previously\s+(?:noted|mentioned|discussed|stated))\s*,?\s*",
    re.IGNORECASE,
)

STOP_WORDS = frozenset(
    {
        "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "can", "to", "of", "in", "for", "on", "with",
        "at", "by", "from", "as", "into", "through", "and", "but", "or", "not",
        "no", "it", "its", "this", "that", "these", "those", "which", "who",
        "we", "you", "they", "their", "our", "there", "than", "then", "also",
        "such", "more", "most", "other", "some", "any", "all", "both", "each",
        "s", "so", "if", "about", "over", "between", "while", "when", "where",
    }
)

BOILERPLATE_PATTERNS = (
    re.compile(
        r"\b(?:ethical considerations?|ethics|transparency|accountability|responsible (?:development|use|innovation|deployment))\b"
        r".*\b(?:will|must|should) (?:be|remain|prove|continue to be) (?:\w+ )?"
        r"(?:crucial|essential|paramount|vital|key|important|critical)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\bforward[- ]looking statements?\b", re.IGNORECASE),
    re.compile(r"\bonly time will tell\b", re.IGNORECASE),
    re.compile(
        r"\bas (?:the|this) (?:field|landscape|technology|industry|area) continues to (?:evolve|develop|grow)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:remains|remain) to be seen\b", re.IGNORECASE),
)


@dataclass
class DedupStats:
    sentences_removed: int = 0
    boilerplate_removed: int = 0
    sections_reverted: int = 0


def split_sentences(text: str) -> list[str]:
    return [s for s in (p.strip() for p in SENTENCE_BOUNDARY.split(text)) if s]


def sentence_ngrams(sentence: str, n: int = 4) -> set[tuple[str, ...]]:
    """Lowercased, punctuation-free word n-grams; grams made only of stop words are discarded."""
    text = CITATION_MARKER.sub(" ", sentence)
    text = BACK_REFERENCE.sub("", text)
    tokens = TOKEN.findall(text.lower())
    grams: set[tuple[str, ...]] = set()
    for i in range(len(tokens) - n + 1):
        gram = tuple(tokens[i : i + n])
        if all(token in STOP_WORDS for token in gram):
            continue
        grams.add(gram)
    return grams


def is_repetition(grams: set[tuple[str, ...]], seen: set[tuple[str, ...]], config: DedupConfig) -> bool:
    total = len(grams)
    if total < 2:
        return False
    matches = len(grams & seen)
    # "As noted, the committee reviewed 119 submissions." has only two grams, so it can never
    # reach min_matches; a fully covered sentence with at least two grams counts as a repeat.
    required = config.min_matches if total >= config.min_matches else total
    return matches >= required and matches / total >= config.min_ratio


def is_boilerplate(sentence: str) -> bool:
    """Generic closing platitude. Sentences carrying figures or citations are findings, never boilerplate."""
    if HAS_DIGIT.search(sentence) or CITATION_MARKER.search(sentence):
        return False
    return any(pattern.search(sentence) for pattern in BOILERPLATE_PATTERNS)


def _is_verbatim_block(paragraph: str) -> bool:
    head = paragraph.lstrip()
    return head.startswith(("#", "|", "```", ">"))


class _SectionFilter:
    def __init__(self, seen: set[tuple[str, ...]], config: DedupConfig, *, exempt: bool, strip_boilerplate: bool):
        self.seen = seen
        self.config = config
        self.exempt = exempt
        self.strip_boilerplate = strip_boilerplate
        self.new_grams: set[tuple[str, ...]] = set()
        self.all_grams: set[tuple[str, ...]] = set()
        self.removed = 0
        self.boilerplate = 0

    def _keep(self, sentence: str) -> bool:
        grams = sentence_ngrams(sentence, self.config.ngram_size)
        self.all_grams |= grams
        if self.strip_boilerplate and is_boilerplate(sentence):
            self.boilerplate += 1
            return False
        if not self.exempt and is_repetition(grams, self.seen | self.new_grams, self.config):
            self.removed += 1
            return False
        self.new_grams |= grams
        return True

    def _filter_line(self, line: str) -> str:
        if not line.strip() or line.lstrip().startswith(("#", "|")):
            return line
        match = LIST_PREFIX.match(line)
        prefix = match.group(1) if match else ""
        body = line[len(prefix):]
        kept = [s for s in split_sentences(body) if self._keep(s)]
        if not kept:
            return ""
        return prefix + " ".join(kept)

    def run(self, content: str) -> str:
        paragraphs: list[str] = []
        in_fence = False
        for paragraph in PARAGRAPH_BREAK.split(content):
            fence_toggles = paragraph.count("```") % 2 == 1
            if in_fence or _is_verbatim_block(paragraph):
                paragraphs.append(paragraph)
                in_fence = in_fence != fence_toggles
                continue
            lines = [self._filter_line(line) for line in paragraph.split("\n")]
            kept_lines = [line for line in lines if line.strip()]
            if kept_lines:
                paragraphs.append("\n".join(kept_lines))
        return "\n\n".join(p for p in paragraphs if p.strip())


def dedupe_sections(
    sections: Iterable[SectionDraft],
    config: DedupConfig | None = None,
) -> tuple[list[SectionDraft], DedupStats]:
    """Filter repeated sentences across an ordered section list.

    Skipped entirely: exempt titles (Methodology, References) and Pending sections.
    The first content-bearing section only seeds the vocabulary. Boilerplate closers
    are stripped everywhere except the last processed section. A section whose
    surviving text would fall under ``min_section_chars`` is kept unmodified.
    """
    config = config or DedupConfig()
    drafts = list(sections)
    exempt_titles = {t.lower() for t in config.exempt_titles}
    eligible = [
        i
        for i, d in enumerate(drafts)
        if not d.is_pending and d.title.strip().lower() not in exempt_titles and d.content.strip()
    ]
    seen: set[tuple[str, ...]] = set()
    stats = DedupStats()
    result = list(drafts)

    for position, index in enumerate(eligible):
        draft = drafts[index]
        section_filter = _SectionFilter(
            seen,
            config,
            exempt=position == 0,
            strip_boilerplate=position < len(eligible) - 1,
        )
        filtered = section_filter.run(draft.content)
        changed = section_filter.removed or section_filter.boilerplate
        if changed and len(filtered.strip()) < config.min_section_chars:
            logger.debug(f"Dedup would empty section '{draft.title}', keeping original text")
            stats.sections_reverted += 1
            seen |= section_filter.all_grams
            continue
        seen |= section_filter.new_grams
        if changed:
            stats.sentences_removed += section_filter.removed
            stats.boilerplate_removed += section_filter.boilerplate
            result[index] = replace(draft, body=Ready(filtered))

    if stats.sentences_removed or stats.boilerplate_removed:
        logger.info(
            f"Dedup removed {stats.sentences_removed} repeated and "
            f"{stats.boilerplate_removed} boilerplate sentences"
        )
    return result, stats
