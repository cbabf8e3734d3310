"""Document naming helpers.

Local document names carry an ISO date prefix when the publication date is
known, e.g. ``2021-05-01_amendment.pdf``. Planner, merger and acquisition all
agree on these rules.
"""

from __future__ import annotations

import re
from datetime import date
from pathlib import Path
from typing import Iterable

from utils.time_utils import parse_ymd_date

RECOGNIZED_EXTENSIONS: tuple[str, ...] = (".pdf", ".doc", ".docx")

_DATE_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")
_DMY_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_UNSAFE_CHARS_RE = re.compile(r'[\\/:*?"<>|]')


def parse_date_prefix(name: str) -> date | None:
    """Return the date encoded in a leading ``YYYY-MM-DD``, or None."""

    m = _DATE_PREFIX_RE.match(name or "")
    if not m:
        return None
    try:
        return parse_ymd_date(m.group(1))
    except ValueError:
        return None


def chronological(names: Iterable[str]) -> list[str]:
    """Sort names by date prefix ascending.

    Undated names go last; ties and undated names keep their input order.
    """

    dated: list[tuple[date, str]] = []
    undated: list[str] = []
    for n in names:
        d = parse_date_prefix(n)
        if d is None:
            undated.append(n)
        else:
            dated.append((d, n))
    # sorted() is stable, so equal dates keep input order.
    dated.sort(key=lambda pair: pair[0])
    return [n for _, n in dated] + undated


def latest_dated(names: Iterable[str]) -> str | None:
    """Chronologically latest dated name; the first one wins on ties."""

    best: str | None = None
    best_date: date | None = None
    for n in names:
        d = parse_date_prefix(n)
        if d is None:
            continue
        if best_date is None or d > best_date:
            best, best_date = n, d
    return best


def dmy_to_prefix(text: str | None) -> str:
    """Convert the first ``DD/MM/YYYY`` in `text` to a ``YYYY-MM-DD_`` prefix.

    Returns "" when no valid date is present.
    """

    if not text:
        return ""
    m = _DMY_RE.search(text)
    if not m:
        return ""
    day, month, year = (int(g) for g in m.groups())
    try:
        d = date(year, month, day)
    except ValueError:
        return ""
    return f"{d.isoformat()}_"


def sanitize_filename(name: str) -> str:
    cleaned = _UNSAFE_CHARS_RE.sub("_", (name or "").strip())
    return cleaned or "document"


def has_recognized_extension(name: str) -> bool:
    return Path(name).suffix.lower() in RECOGNIZED_EXTENSIONS


def strip_recognized_extension(name: str) -> str:
    p = Path(name)
    if p.suffix.lower() in RECOGNIZED_EXTENSIONS:
        return name[: -len(p.suffix)]
    return name


def unique_base_names(bases: Iterable[str]) -> list[str]:
    """Suffix repeated base names with ``_(n)`` in order of appearance.

    ``["a", "a", "b", "a"]`` becomes ``["a", "a_(1)", "b", "a_(2)"]``.
    """

    seen: dict[str, int] = {}
    taken: set[str] = set()
    out: list[str] = []
    for base in bases:
        if base not in taken:
            seen.setdefault(base, 0)
            taken.add(base)
            out.append(base)
            continue
        n = seen.get(base, 0)
        while True:
            n += 1
            candidate = f"{base}_({n})"
            if candidate not in taken:
                break
        seen[base] = n
        taken.add(candidate)
        out.append(candidate)
    return out


def list_recognized_files(directory: Path) -> list[str]:
    """Names of recognized document files in `directory`, sorted by name."""

    if not directory.is_dir():
        return []
    return sorted(
        p.name
        for p in directory.iterdir()
        if p.is_file() and has_recognized_extension(p.name)
    )
