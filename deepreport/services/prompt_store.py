"""Prompt catalog for every completion call the engine makes.

Prompts live in ``prompts/prompts.json`` as a nested object addressed by dotted keys
(``"report.section_system"``). A value is either one string or a list of lines that are
joined with newlines. Placeholders use ``string.Template`` syntax (``$query``), and a
missing value fails loudly instead of leaking a literal ``$name`` to the model.

The catalog is re-read whenever the file's mtime changes, so prompts can be tuned
while a long research run is in progress.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


@dataclass
class _CachedCatalog:
    path: Path
    mtime_ns: int
    entries: dict[str, Any]


_cached: _CachedCatalog | None = None


def _catalog() -> dict[str, Any]:
    global _cached
    path = PROMPTS_PATH
    mtime_ns = path.stat().st_mtime_ns
    if _cached is not None and _cached.path == path and _cached.mtime_ns == mtime_ns:
        return _cached.entries

    entries = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(entries, dict):
        raise ValueError(f"Prompt catalog {path} must hold a JSON object")
    _cached = _CachedCatalog(path=path, mtime_ns=mtime_ns, entries=entries)
    return entries


def get_prompt(key: str) -> str:
    """Raw template text for a dotted key."""
    node: Any = _catalog()
    for part in key.split("."):
        try:
            node = node[part]
        except (KeyError, TypeError):
            raise KeyError(f"Unknown prompt: {key}") from None

    if isinstance(node, list) and all(isinstance(line, str) for line in node):
        return "\n".join(node)
    if isinstance(node, str):
        return node
    raise TypeError(f"Prompt {key} is a {type(node).__name__}, expected text")


def render_prompt(key: str, **values: Any) -> str:
    template = Template(get_prompt(key))
    try:
        return template.substitute(values)
    except KeyError as exc:
        raise KeyError(f"Prompt {key} needs a value for ${exc.args[0]}") from exc


def clear_prompt_cache() -> None:
    global _cached
    _cached = None
