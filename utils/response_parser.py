"""Lenient JSON extraction from free-form model output.

Models asked for JSON still sometimes wrap it in Markdown fences or add prose
around it. `parse_model_json` tries, in order:

1. strict JSON
2. the text with a leading/trailing code fence removed (closing fence optional)
3. the substring from the first ``{`` to the last ``}``

It never guesses: if none of those yields a JSON object, it raises `ParseError`.
"""

from __future__ import annotations

import json
import re
from typing import Any

from logging_utils import get_logger
from utils.errors import ParseError

logger = get_logger(__name__)

_LEADING_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\r?\n?", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\r?\n?```\s*$")


def _strip_code_fence(text: str) -> str | None:
    if not text.startswith("```"):
        return None
    body = _LEADING_FENCE_RE.sub("", text, count=1)
    body = _TRAILING_FENCE_RE.sub("", body, count=1)
    return body.strip()


def _brace_slice(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _try_load(candidate: str | None) -> tuple[bool, Any]:
    if candidate is None:
        return False, None
    try:
        return True, json.loads(candidate)
    except ValueError:
        return False, None


def parse_model_json(raw_text: str | None, label: str = "response") -> dict[str, Any]:
    """Return the single JSON object contained in `raw_text`.

    Raises:
        ParseError: empty input, no JSON object present, or unparseable payload.
    """

    if raw_text is None or not str(raw_text).strip():
        raise ParseError("Empty response from model", label=label)

    text = str(raw_text).strip()

    for stage, candidate in (
        ("strict", lambda: text),
        ("fence", lambda: _strip_code_fence(text)),
        ("braces", lambda: _brace_slice(text)),
    ):
        ok, value = _try_load(candidate())
        if not ok:
            continue
        if not isinstance(value, dict):
            raise ParseError(
                f"Expected a JSON object for {label}, got {type(value).__name__}",
                label=label,
            )
        if stage != "strict":
            logger.debug("Parsed model output leniently | label=%s stage=%s", label, stage)
        return value

    if "{" not in text:
        raise ParseError(f"Unexpected content for {label}: {text[:80]!r}", label=label)

    logger.warning(
        "Model output not parseable | label=%s preview=%r", label, text[:200]
    )
    raise ParseError(f"Failed to parse JSON for {label}", label=label)
