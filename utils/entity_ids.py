"""Entity id inputs.

A registry id is a non-empty string of digits. Id files come in a few shapes:

- ``["123", 456]``
- ``{"companies": [{"id": "123"}, {"gemi_id": "456"}, {"gemi-id": "789"}]}``
- ``{"gemi_ids": ["123", "456"]}``
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Iterable

from logging_utils import get_logger

logger = get_logger(__name__)

_ENTITY_ID_RE = re.compile(r"^\d+$")
_COMPANY_ID_KEYS = ("id", "gemi_id", "gemi-id")


def normalize_entity_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    s = str(value).strip()
    return s if _ENTITY_ID_RE.match(s) else None


def is_valid_entity_id(value: Any) -> bool:
    return normalize_entity_id(value) is not None


def _raw_ids(payload: Any) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        if isinstance(payload.get("companies"), list):
            out: list[Any] = []
            for company in payload["companies"]:
                if isinstance(company, dict):
                    out.append(next((company[k] for k in _COMPANY_ID_KEYS if k in company), None))
                else:
                    out.append(company)
            return out
        if isinstance(payload.get("gemi_ids"), list):
            return payload["gemi_ids"]
    raise ValueError("Unrecognized entity id file format")


def clean_entity_ids(values: Iterable[Any]) -> list[str]:
    """Validate and de-duplicate ids, keeping first-seen order."""

    seen: set[str] = set()
    ids: list[str] = []
    for raw in values:
        entity_id = normalize_entity_id(raw)
        if entity_id is None:
            logger.warning("Skipping invalid entity id | value=%r", raw)
            continue
        if entity_id in seen:
            logger.debug("Skipping duplicate entity id | id=%s", entity_id)
            continue
        seen.add(entity_id)
        ids.append(entity_id)
    return ids


def load_entity_ids(path: Path | str) -> list[str]:
    """Read and validate entity ids from a JSON file.

    Raises:
        OSError: unreadable file
        ValueError: invalid JSON or unknown shape
    """

    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    ids = clean_entity_ids(_raw_ids(payload))
    logger.info("Loaded entity ids | path=%s count=%s", path, len(ids))
    return ids
