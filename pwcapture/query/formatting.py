"""Small text helpers shared by the markdown and HTML renderers."""

import json
from typing import Any, NamedTuple, Optional

TRUNCATION_MARKER = "... (truncated)"


class FormattedBody(NamedTuple):
    text: str
    lang: str


def format_duration(ms: Optional[float]) -> str:
    """``850ms``, ``1.5s`` or ``12s``; ``?`` when unknown."""
    if ms is None:
        return "?"
    if ms >= 10_000:
        return f"{round(ms / 1000)}s"
    if ms >= 1000:
        return f"{ms / 1000:.1f}s"
    return f"{ms:g}ms"


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def format_body(body: str, limit: int) -> FormattedBody:
    """Pretty-print JSON bodies; label HTML; truncate to ``limit`` characters."""
    try:
        formatted = json.dumps(json.loads(body), indent=2)
        lang = "json"
    except (json.JSONDecodeError, TypeError):
        formatted = body
        lang = "html" if body.lstrip().startswith("<") else "text"
    return FormattedBody(truncate(formatted, limit), lang)


def format_params(params: Any) -> str:
    if isinstance(params, str):
        return params
    return json.dumps(params, indent=2, default=str)


def first_line(text: str) -> str:
    for line in text.split("\n"):
        if line.strip():
            return line.strip()
    return text
