"""Content-fingerprint download gate.

Decides whether a remote document needs downloading by comparing the MD5 of
the local copy with the MD5 of the remote bytes.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from logging_utils import get_logger
from utils.document_names import RECOGNIZED_EXTENSIONS

logger = get_logger(__name__)


class FetchAction(str, Enum):
    SKIP = "skip"
    REPLACE = "replace"
    FETCH_NEW = "fetch_new"


@dataclass(frozen=True)
class GateDecision:
    action: FetchAction
    # Local file removed as part of REPLACE (or invalidated because unreadable).
    replaced_path: Path | None = None
    # Remote payload already pulled while hashing; reuse it instead of fetching again.
    remote: Any = None

    @property
    def needs_write(self) -> bool:
        return self.action is not FetchAction.SKIP


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def file_md5(path: Path) -> str:
    h = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def find_local_candidate(local_base_path: Path) -> Path | None:
    """Return an existing file at `local_base_path` + a recognized extension."""

    parent = local_base_path.parent
    if not parent.is_dir():
        return None
    base = local_base_path.name
    matches = [
        p
        for p in parent.iterdir()
        if p.is_file()
        and p.name.startswith(base)
        and p.name[len(base) :].lower() in RECOGNIZED_EXTENSIONS
    ]
    if not matches:
        return None
    # Extension order decides if several survive from older runs.
    matches.sort(key=lambda p: RECOGNIZED_EXTENSIONS.index(p.name[len(base) :].lower()))
    return matches[0]


def _payload_bytes(payload: Any) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return bytes(payload.content)


class ContentFingerprintGate:
    """Keep / replace / fetch decision for one remote reference.

    `fetch_remote(remote_ref)` returns either raw bytes or an object with a
    `.content` bytes attribute (e.g. `DownloadedFile`).
    """

    def __init__(self, fetch_remote: Callable[[str], Any]) -> None:
        self._fetch_remote = fetch_remote

    def should_fetch(self, remote_ref: str, local_base_path: Path) -> GateDecision:
        local = find_local_candidate(Path(local_base_path))
        if local is None:
            return GateDecision(FetchAction.FETCH_NEW)

        try:
            local_hash = file_md5(local)
        except OSError as e:
            logger.warning(
                "Local copy unreadable, invalidating | path=%s err=%s", local, e
            )
            local.unlink(missing_ok=True)
            return GateDecision(FetchAction.FETCH_NEW, replaced_path=local)

        try:
            remote = self._fetch_remote(remote_ref)
            remote_hash = md5_hex(_payload_bytes(remote))
        except Exception as e:  # network / HTTP errors from the session
            # Fail safe: keep the local copy rather than churn on flaky networks.
            logger.warning(
                "Remote hash unavailable, keeping local copy | ref=%s path=%s err=%s",
                remote_ref,
                local,
                e,
            )
            return GateDecision(FetchAction.SKIP)

        if remote_hash == local_hash:
            logger.debug("Unchanged | ref=%s path=%s md5=%s", remote_ref, local, local_hash)
            return GateDecision(FetchAction.SKIP)

        logger.info(
            "Content changed, replacing | ref=%s path=%s local_md5=%s remote_md5=%s",
            remote_ref,
            local,
            local_hash,
            remote_hash,
        )
        local.unlink(missing_ok=True)
        return GateDecision(FetchAction.REPLACE, replaced_path=local, remote=remote)
