"""Time helpers.

All stored timestamps are timezone-aware UTC; scan dates are written as
``2024-05-01T12:00:00Z``. Dates carried in document names and identity fields
are plain ``YYYY-MM-DD``.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

_YMD_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def utcnow_sa_default() -> datetime:
    """SQLAlchemy column default for UTC timestamps."""

    return utcnow()


def ensure_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso_z(dt: datetime) -> str:
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_iso_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed); None if unusable."""

    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError:
        return None


def parse_ymd_date(date_str: str) -> date:
    """Parse a strict YYYY-MM-DD string.

    Raises:
        ValueError: other shapes (``20200101``, ``2020-1-1``) or impossible dates.
    """

    if not _YMD_RE.match(date_str or ""):
        raise ValueError(f"Expected YYYY-MM-DD, got {date_str!r}")
    return date.fromisoformat(date_str)
